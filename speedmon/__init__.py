"""speedmon — periodic network-quality probe daemon."""

__version__ = "0.1.0"
