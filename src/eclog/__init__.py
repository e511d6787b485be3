"""eclog: severity-gated logging and a supervisor for a persistent log capture process."""

__version__ = "0.3.0"
