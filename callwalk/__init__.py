"""Call-center script graph engine."""

__version__ = "0.1.0"
