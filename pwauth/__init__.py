"""Password-derived self-signed key authentication."""

__version__ = "0.1.0"
