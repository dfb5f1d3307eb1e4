"""
Error taxonomy for the gateway.
Every error carries the HTTP status it is reported with.
"""


class GatewayError(Exception):
    """Base exception for gateway operations."""
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(GatewayError):
    """Login rejected: missing or incorrect password."""
    status_code = 401


class NotLoggedInError(GatewayError):
    """Administrative request without an authenticated session."""
    status_code = 401

    def __init__(self, message: str = "Not Logged In"):
        super().__init__(message)


class PortOutOfRangeError(GatewayError):
    """Requested port lies outside the configured range."""
    status_code = 400


class OverrideWriteError(GatewayError):
    """The port override file could not be replaced."""
    status_code = 500


class WireGuardError(GatewayError):
    """The external WireGuard service failed or is unreachable."""
    status_code = 502
