from __future__ import annotations

import logging
import os
import re

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from sso.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_SESSION_IDLE_SECONDS,
    DEFAULT_STATE_TTL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
)
from sso.constants import LOGGER as SSO_LOGGER
from sso.errors import ConfigurationError
from sso.models import (
    ClientAuthScheme,
    ClientRegistration,
    ResourceServerConfig,
    TokenPlacement,
)
from sso.providers import (
    FACEBOOK_AUTHORIZE_URL,
    FACEBOOK_REDIRECT_PATH,
    FACEBOOK_TOKEN_URL,
    FACEBOOK_USER_INFO_URL,
)

from .constants import DEFAULT_PROTECTED_PATHS, ENV_FILE, LOGGER

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_list_env(key: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return default
    return tuple(item for item in re.split(r"[,\s]+", raw.strip()) if item)


def _get_env(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip() or default


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer value.") from None


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number.") from None


def _validate_url(key: str, value: str) -> None:
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError as error:
        raise ConfigurationError(f"{key} must be an absolute http(s) URL, got {value!r}.") from error


def load_env() -> None:
    if not ENV_FILE.exists():
        return
    load_dotenv(ENV_FILE, override=True)


def validate_env() -> None:
    required = (
        "SSO_CLIENT_ID",
        "SSO_CLIENT_SECRET",
        "SSO_SESSION_SECRET",
    )
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    for key in ("SSO_AUTHORIZATION_URI", "SSO_TOKEN_URI", "SSO_USER_INFO_URI", "SSO_PUBLIC_URL"):
        value = os.getenv(key, "").strip()
        if value:
            _validate_url(key, value)

    for key, default in (
        ("SSO_STATE_TTL_SECONDS", DEFAULT_STATE_TTL_SECONDS),
        ("SSO_SESSION_IDLE_SECONDS", DEFAULT_SESSION_IDLE_SECONDS),
    ):
        if _get_env_int(key, default) <= 0:
            raise ConfigurationError(f"{key} must be positive.")
    if _get_env_int("SSO_MAX_RETRIES", DEFAULT_MAX_RETRIES) < 0:
        raise ConfigurationError("SSO_MAX_RETRIES must not be negative.")
    if _get_env_float("SSO_HTTP_TIMEOUT", DEFAULT_TIMEOUT_SECONDS) <= 0:
        raise ConfigurationError("SSO_HTTP_TIMEOUT must be positive.")


def load_registration() -> ClientRegistration:
    registration = ClientRegistration(
        client_id=_get_env("SSO_CLIENT_ID"),
        client_secret=_get_env("SSO_CLIENT_SECRET"),
        authorization_uri=_get_env("SSO_AUTHORIZATION_URI", FACEBOOK_AUTHORIZE_URL),
        token_uri=_get_env("SSO_TOKEN_URI", FACEBOOK_TOKEN_URL),
        redirect_path=_get_env("SSO_REDIRECT_PATH", FACEBOOK_REDIRECT_PATH),
        scope=parse_list_env("SSO_SCOPES", ("public_profile",)),
        token_param_name=_get_env("SSO_TOKEN_PARAM_NAME", "oauth_token"),
        client_auth_scheme=ClientAuthScheme.parse(_get_env("SSO_CLIENT_AUTH_SCHEME", "form")),
        scope_separator=os.getenv("SSO_SCOPE_SEPARATOR") or ",",
    )
    return registration.validate()


def load_resource_config() -> ResourceServerConfig:
    config = ResourceServerConfig(
        user_info_uri=_get_env("SSO_USER_INFO_URI", FACEBOOK_USER_INFO_URL),
        token_placement=TokenPlacement.parse(_get_env("SSO_TOKEN_PLACEMENT", "query")),
    )
    return config.validate()


def load_public_url() -> str | None:
    return _get_env("SSO_PUBLIC_URL") or None


def load_protected_paths() -> tuple[str, ...]:
    return parse_list_env("SSO_PROTECTED_PATHS", DEFAULT_PROTECTED_PATHS)


def load_state_ttl_seconds() -> int:
    return _get_env_int("SSO_STATE_TTL_SECONDS", DEFAULT_STATE_TTL_SECONDS)


def load_session_idle_seconds() -> int:
    return _get_env_int("SSO_SESSION_IDLE_SECONDS", DEFAULT_SESSION_IDLE_SECONDS)


def load_max_retries() -> int:
    return _get_env_int("SSO_MAX_RETRIES", DEFAULT_MAX_RETRIES)


def load_http_timeout() -> float:
    return _get_env_float("SSO_HTTP_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("SSO_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
        SSO_LOGGER.setLevel(logging.INFO)
    return debug_enabled
