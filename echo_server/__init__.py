"""HTTP/HTTPS echo service with an in-memory self-signed certificate generator."""

__version__ = "1.0.0"
