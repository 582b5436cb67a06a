import pytest

from sso.state_store import AuthorizationStateStore
from tests.sso_helpers import make_registration, make_resource_config


@pytest.fixture
def registration():
    return make_registration()


@pytest.fixture
def resource_config():
    return make_resource_config()


@pytest.fixture
def state_store() -> AuthorizationStateStore:
    return AuthorizationStateStore(ttl_seconds=300)


@pytest.fixture
def sso_env(monkeypatch):
    monkeypatch.setattr("server.load_env", lambda: None)
    for key in (
        "SSO_PUBLIC_URL",
        "SSO_SCOPES",
        "SSO_CLIENT_AUTH_SCHEME",
        "SSO_TOKEN_PLACEMENT",
        "SSO_PROTECTED_PATHS",
        "SSO_REDIRECT_PATH",
        "SSO_TOKEN_PARAM_NAME",
        "SSO_SCOPE_SEPARATOR",
        "SSO_STATE_TTL_SECONDS",
        "SSO_SESSION_IDLE_SECONDS",
        "SSO_MAX_RETRIES",
        "SSO_HTTP_TIMEOUT",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SSO_CLIENT_ID", "X")
    monkeypatch.setenv("SSO_CLIENT_SECRET", "shh")
    monkeypatch.setenv("SSO_SESSION_SECRET", "session-secret")
    monkeypatch.setenv("SSO_AUTHORIZATION_URI", "https://auth.example/authorize")
    monkeypatch.setenv("SSO_TOKEN_URI", "https://auth.example/token")
    monkeypatch.setenv("SSO_USER_INFO_URI", "https://graph.example/me")
    monkeypatch.setenv("SSO_DEBUG", "0")
    return monkeypatch
