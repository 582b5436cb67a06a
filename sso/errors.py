from __future__ import annotations


class SsoError(RuntimeError):
    """Base class for every failure of the login flow."""


class ConfigurationError(SsoError):
    pass


class InvalidStateError(SsoError):
    """The callback state is unknown, expired, or bound to another session."""


class AuthorizationDeniedError(SsoError):
    """The authorization server redirected back with an ``error`` parameter."""

    def __init__(self, error: str, description: str | None = None) -> None:
        message = f"Authorization denied: {error}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)
        self.error = error
        self.description = description


class TokenExchangeError(SsoError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RefreshError(TokenExchangeError):
    pass


class UnauthenticatedError(SsoError):
    pass


class ResourceAccessError(SsoError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
