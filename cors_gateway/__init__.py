"""Forwarding gateway that adds CORS headers to proxied responses."""

__version__ = "0.1.0"
