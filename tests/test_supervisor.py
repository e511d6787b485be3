"""Tests for the capture supervisor against an in-memory process table."""

from __future__ import annotations

import gc
import threading
from datetime import datetime
from pathlib import Path

import pytest

from eclog.context import AppContext
from eclog.errors import ConfigurationError
from eclog.log import Level
from eclog.process_table import ProcessTable
from eclog.settings import PREFS_NAMESPACE, CaptureSettings, LogFormat
from eclog.supervisor import LogcatSupervisor, build_capture_command, format_since, get_supervisor

from conftest import APP_NAME, APP_USER, FakePort


def _settings(app: AppContext) -> CaptureSettings:
    return CaptureSettings(app.preferences(PREFS_NAMESPACE))


@pytest.fixture
def dest(app, tmp_path) -> Path:
    path = tmp_path / "logcat.txt"
    _settings(app).destination = path
    return path


class TestStart:
    def test_without_destination_fails_the_same_way_twice(self, supervisor, app, port):
        with pytest.raises(ConfigurationError) as first:
            supervisor.start()
        prefs_after_first = app.preferences(PREFS_NAMESPACE).all()

        with pytest.raises(ConfigurationError) as second:
            supervisor.start()

        assert str(first.value) == str(second.value)
        assert app.preferences(PREFS_NAMESPACE).all() == prefs_after_first
        assert port.spawned == []

    def test_spawns_capture_with_stored_settings(self, supervisor, port, dest):
        assert supervisor.start() is True
        assert port.spawned == [[
            "logcat", "-f", str(dest), "-r", "256", "-n", "1", "-v", "time",
        ]]
        assert len(port.capture_rows()) == 1

    def test_second_start_reuses_running_process(self, supervisor, port, dest):
        assert supervisor.start()
        assert supervisor.start()
        assert len(port.spawned) == 1

    def test_clears_previous_log_by_default(self, supervisor, dest):
        dest.write_text("old", encoding="utf-8")
        supervisor.start()
        assert not dest.exists()

    def test_append_keeps_previous_log(self, supervisor, dest):
        dest.write_text("old", encoding="utf-8")
        supervisor.start(clear_previous_log=False)
        assert dest.read_text(encoding="utf-8") == "old"

    def test_owner_is_discovered_once_and_cached(self, supervisor, app, port, dest):
        supervisor.start()
        assert _settings(app).owner_user == APP_USER

        # The app no longer shows up in the listing, the cached owner is used.
        port.rows = [row for row in port.rows if row[2] != APP_NAME]
        supervisor.stop()
        assert supervisor.start()
        assert len(port.spawned) == 2

    def test_unknown_owner_does_not_spawn(self, app, dest):
        port = FakePort(rows=[("root", "1", "init")])
        supervisor = LogcatSupervisor(app, table=ProcessTable(port, filtered_listing_argv=None))
        assert supervisor.start() is False
        assert port.spawned == []
        assert _settings(app).owner_user is None

    def test_capture_of_another_user_is_ignored(self, supervisor, port, dest):
        port.rows.append(("u0_a99", "900", "logcat"))
        assert supervisor.start()
        assert len(port.spawned) == 1
        assert supervisor.capture_pid() != "900"

    def test_spawn_failure_returns_false_and_leaves_nothing(self, supervisor, port, dest, sink):
        port.fail_spawn = True
        assert supervisor.start() is False
        assert port.capture_rows() == []
        assert any(r[0] is Level.ERROR for r in sink.records)

    def test_listing_failure_returns_false(self, supervisor, port, dest):
        port.fail_listing = True
        assert supervisor.start() is False
        assert port.spawned == []

    def test_unparseable_listing_means_unknown_owner(self, supervisor, port, dest):
        port.output = ["garbage"]
        assert supervisor.start() is False
        assert port.spawned == []

    def test_false_when_spawned_process_is_not_visible_yet(self, supervisor, port, dest):
        port.spawn_user = "somebody-else"
        assert supervisor.start() is False
        assert len(port.spawned) == 1

    def test_concurrent_starts_spawn_once(self, supervisor, port, dest):
        port.spawn_delay = 0.05
        barrier = threading.Barrier(2)
        results: list[bool] = []

        def run() -> None:
            barrier.wait()
            results.append(supervisor.start())

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == [True, True]
        assert len(port.spawned) == 1
        assert len(port.capture_rows()) == 1


class TestStop:
    def test_nothing_running_is_success_without_signal(self, supervisor, port):
        assert supervisor.stop() is True
        assert port.killed == []

    def test_kills_our_capture_process(self, supervisor, port, dest):
        supervisor.start()
        pid = supervisor.capture_pid()
        assert supervisor.stop() is True
        assert port.killed == [pid]
        assert not supervisor.is_running()

    def test_leaves_other_users_capture_alone(self, supervisor, port):
        port.rows.append(("u0_a99", "900", "logcat"))
        assert supervisor.stop() is True
        assert port.killed == []

    def test_kill_failure_returns_false(self, supervisor, port, dest):
        supervisor.start()
        port.fail_kill = True
        assert supervisor.stop() is False
        assert supervisor.is_running()

    def test_unknown_owner_returns_false(self, app):
        port = FakePort(rows=[])
        supervisor = LogcatSupervisor(app, table=ProcessTable(port, filtered_listing_argv=None))
        assert supervisor.stop() is False


class TestResetAndClear:
    def test_clear_sets_since_to_now(self, supervisor, app, port, dest):
        before = datetime.now()
        before = before.replace(microsecond=before.microsecond // 1000 * 1000)

        assert supervisor.clear_logcat() is True

        since = _settings(app).since
        assert since is not None
        stamped = datetime.strptime(f"{before.year}-{since}", "%Y-%m-%d %H:%M:%S.%f")
        assert stamped >= before

    def test_clear_restarts_the_capture(self, supervisor, port, dest):
        supervisor.start()
        old_pid = supervisor.capture_pid()
        assert supervisor.clear_logcat()
        assert port.killed == [old_pid]
        assert len(port.spawned) == 2

    def test_since_checkpoint_is_passed_to_the_capture_tool(self, app, table, port, dest):
        """The stored checkpoint itself goes after -T, not a placeholder "0"."""
        supervisor = LogcatSupervisor(app, table=table, clock=lambda: datetime(2024, 3, 9, 14, 5, 6, 789000))
        supervisor.clear_logcat()
        argv = port.spawned[-1]
        assert argv[argv.index("-T") + 1] == "03-09 14:05:06.789"

    def test_reset_drops_since_and_captures_everything(self, supervisor, app, port, dest):
        supervisor.clear_logcat()
        assert _settings(app).since is not None

        assert supervisor.reset_logcat() is True
        assert _settings(app).since is None
        assert not app.preferences(PREFS_NAMESPACE).contains("LogcatSince")
        assert "-T" not in port.spawned[-1]
        assert len(port.capture_rows()) == 1

    def test_reset_looks_the_owner_up_again(self, supervisor, app, port, dest):
        _settings(app).owner_user = "stale-user"
        assert supervisor.reset_logcat()
        assert _settings(app).owner_user == APP_USER

    def test_reset_without_destination_raises(self, supervisor):
        with pytest.raises(ConfigurationError):
            supervisor.reset_logcat()

    def test_clear_without_destination_raises(self, supervisor):
        with pytest.raises(ConfigurationError):
            supervisor.clear_logcat()


class TestSettings:
    def test_setters_do_not_touch_the_live_process(self, supervisor, app, port, dest):
        supervisor.start()
        listings = len(port.listings)

        assert supervisor.set_max_file_size(1024)
        assert supervisor.set_max_files(3)
        assert supervisor.set_format(LogFormat.LONG)
        assert supervisor.set_filter_tag("MyTag")

        assert len(port.listings) == listings
        assert len(port.spawned) == 1
        assert port.killed == []

        settings = _settings(app)
        assert (settings.max_file_size_kb, settings.max_files, settings.format, settings.filter_tag) == (
            1024, 3, "long", "MyTag",
        )

    def test_new_settings_apply_on_next_start(self, supervisor, port, dest):
        supervisor.set_max_file_size(64)
        supervisor.set_max_files(2)
        supervisor.set_format("threadtime")
        supervisor.set_filter_tag("MyTag")
        supervisor.start()
        assert port.spawned[-1] == [
            "logcat", "-f", str(dest), "-r", "64", "-n", "2", "-v", "threadtime", "*:S", "MyTag",
        ]

    def test_set_destination(self, supervisor, app, tmp_path):
        assert supervisor.set_destination(tmp_path / "x.log")
        assert _settings(app).destination == str(tmp_path / "x.log")

    def test_build_command_with_every_option(self, app, dest):
        settings = _settings(app)
        settings.since = "12-31 23:59:59.999"
        settings.filter_tag = "Tag"
        assert build_capture_command("/system/bin/logcat", settings) == [
            "/system/bin/logcat", "-f", str(dest), "-r", "256", "-n", "1", "-v", "time",
            "-T", "12-31 23:59:59.999", "*:S", "Tag",
        ]

    def test_build_command_without_destination(self, app):
        with pytest.raises(ConfigurationError):
            build_capture_command("logcat", _settings(app))

    def test_capture_name_is_the_command_basename(self, app, table, port, dest):
        supervisor = LogcatSupervisor(app, table=table, capture_command="/system/bin/logcat")
        assert supervisor.start()
        assert supervisor.capture_name == "logcat"

    def test_format_since(self):
        assert format_since(datetime(2024, 1, 2, 3, 4, 5, 6000)) == "01-02 03:04:05.006"


class TestContextBinding:
    def test_get_instance_is_memoized_per_context(self, tmp_path):
        first = AppContext(name=APP_NAME, data_dir=tmp_path / "a")
        second = AppContext(name=APP_NAME, data_dir=tmp_path / "b")
        assert get_supervisor(first) is get_supervisor(first)
        assert get_supervisor(first) is not get_supervisor(second)

    def test_get_instance_warns_about_ignored_options(self, app, table, sink):
        first = LogcatSupervisor.get_instance(app, table=table)
        again = LogcatSupervisor.get_instance(app, capture_command="/system/bin/logcat")
        assert again is first
        assert again.capture_command == "logcat"
        warnings = sink.messages(Level.WARN)
        assert any("capture_command" in m for m in warnings)

    def test_supervisor_does_not_keep_context_alive(self, tmp_path, table):
        app = AppContext(name=APP_NAME, data_dir=tmp_path / "data")
        supervisor = LogcatSupervisor.get_instance(app, table=table)
        del app
        gc.collect()
        assert supervisor.context is None

    def test_released_context_fails_without_raising(self, tmp_path, table, port, sink):
        app = AppContext(name=APP_NAME, data_dir=tmp_path / "data")
        supervisor = LogcatSupervisor(app, table=table)
        del app
        gc.collect()

        assert supervisor.start() is False
        assert supervisor.stop() is False
        assert supervisor.reset_logcat() is False
        assert supervisor.clear_logcat() is False
        assert supervisor.set_max_files(2) is False
        assert port.listings == []
        assert any(r[0] is Level.ERROR for r in sink.records)

    def test_rebinds_to_a_new_context(self, tmp_path, table, port):
        app = AppContext(name=APP_NAME, data_dir=tmp_path / "data")
        supervisor = LogcatSupervisor.get_instance(app, table=table)
        del app
        gc.collect()

        fresh = AppContext(name=APP_NAME, data_dir=tmp_path / "data")
        _settings(fresh).destination = tmp_path / "out.txt"
        assert supervisor.start(context=fresh) is True
        assert supervisor.context is fresh
        assert LogcatSupervisor.get_instance(fresh) is supervisor
        # Bound now, no context needed any more.
        assert supervisor.stop() is True

    def test_live_context_is_kept_when_another_is_passed(self, app, supervisor, tmp_path, dest):
        other = AppContext(name="other", data_dir=tmp_path / "other")
        assert supervisor.start(context=other)
        assert supervisor.context is app
