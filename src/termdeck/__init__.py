"""termdeck — side-by-side interactive shell and agent sessions."""

__version__ = "0.1.0"
