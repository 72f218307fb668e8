"""Local HTTP API for store maintenance."""

__version__ = "0.4.0"
