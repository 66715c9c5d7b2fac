"""Exceptions raised by jvmdash."""


class DashboardError(Exception):
    """Base exception for jvmdash."""


class ConfigError(DashboardError):
    """Invalid configuration value."""


class ApiError(DashboardError):
    """The dashboard server answered with an error status or an unreadable body."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class ApiTimeoutError(DashboardError):
    """A request to the dashboard server timed out."""


class ApiConnectionError(DashboardError):
    """The dashboard server could not be reached."""
