"""Run command extension handler."""

__version__ = "1.3.0"
