from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from sso.errors import ConfigurationError


class ClientAuthScheme(str, Enum):
    QUERY = "query"
    FORM = "form"
    BASIC = "basic"

    @classmethod
    def parse(cls, value: str) -> "ClientAuthScheme":
        try:
            return cls(value.strip().lower())
        except ValueError:
            allowed = ", ".join(scheme.value for scheme in cls)
            raise ConfigurationError(
                f"Unknown client authentication scheme {value!r}; expected one of: {allowed}."
            ) from None


class TokenPlacement(str, Enum):
    HEADER = "header"
    QUERY = "query"

    @classmethod
    def parse(cls, value: str) -> "TokenPlacement":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown token placement {value!r}; expected 'header' or 'query'."
            ) from None


class SsoStatus(str, Enum):
    ANONYMOUS = "anonymous"
    AWAITING_CALLBACK = "awaiting_callback"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class ClientRegistration:
    client_id: str
    client_secret: str
    authorization_uri: str
    token_uri: str
    redirect_path: str = "/login"
    scope: tuple[str, ...] = ()
    token_param_name: str = "access_token"
    client_auth_scheme: ClientAuthScheme = ClientAuthScheme.FORM
    scope_separator: str = " "

    def validate(self) -> "ClientRegistration":
        required = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "authorization_uri": self.authorization_uri,
            "token_uri": self.token_uri,
            "redirect_path": self.redirect_path,
        }
        missing = [name for name, value in required.items() if not value or not value.strip()]
        if missing:
            raise ConfigurationError(
                f"Client registration is missing required fields: {', '.join(missing)}"
            )
        if not self.redirect_path.startswith("/"):
            raise ConfigurationError("redirect_path must start with '/'.")
        return self


@dataclass(frozen=True)
class ResourceServerConfig:
    user_info_uri: str
    token_placement: TokenPlacement = TokenPlacement.HEADER

    def validate(self) -> "ResourceServerConfig":
        if not self.user_info_uri or not self.user_info_uri.strip():
            raise ConfigurationError("Resource server config is missing user_info_uri.")
        return self


@dataclass(frozen=True)
class AuthorizationState:
    state_token: str
    session_id: str
    redirect_uri: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at


@dataclass(frozen=True)
class TokenContext:
    access_token: str
    token_type: str = "bearer"
    expires_at: float | None = None
    refresh_token: str | None = None
    scope: str | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current >= self.expires_at

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)


@dataclass(frozen=True)
class Principal:
    subject_id: str
    display_name: str
    raw_attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw_attributes", MappingProxyType(dict(self.raw_attributes)))


@dataclass(frozen=True)
class AuthenticationRequired:
    """Result of a capability check on a protected path without a principal."""

    resume_path: str
