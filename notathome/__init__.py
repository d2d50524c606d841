"""Not At Home session coordination API."""

__version__ = "1.0.0"
