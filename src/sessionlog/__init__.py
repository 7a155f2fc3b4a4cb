"""sessionlog - normalize AI coding assistant session logs."""

__version__ = "0.3.0"
