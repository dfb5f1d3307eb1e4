"""WireGuard gateway: port lease and admin session control surface."""

__version__ = "1.0.0"
