"""Per-job metrics collection for the file bundler."""

__version__ = "0.1.0"
