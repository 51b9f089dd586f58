"""Reverse proxy that rotates pooled upstream keys behind virtual tokens."""

__version__ = "0.1.0"
