from __future__ import annotations

import urllib.parse

from sso.errors import ConfigurationError
from sso.models import AuthorizationState, ClientRegistration


def append_query_params(url: str, params: dict[str, str]) -> str:
    parsed = urllib.parse.urlparse(url)
    existing = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
    for key, value in params.items():
        existing[key] = [value]

    new_query = urllib.parse.urlencode(existing, doseq=True)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))


def build_redirect_uri(base_url: str, redirect_path: str) -> str:
    return f"{base_url.rstrip('/')}{redirect_path}"


def build_authorization_url(
    registration: ClientRegistration,
    state: AuthorizationState,
    redirect_uri: str,
) -> str:
    """Front-channel URL for the authorization endpoint. Never carries the secret."""
    if not registration.authorization_uri:
        raise ConfigurationError("Client registration has no authorization_uri.")
    if not registration.client_id:
        raise ConfigurationError("Client registration has no client_id.")

    query = {
        "response_type": "code",
        "client_id": registration.client_id,
        "redirect_uri": redirect_uri,
        "state": state.state_token,
    }
    if registration.scope:
        query["scope"] = registration.scope_separator.join(registration.scope)
    return append_query_params(registration.authorization_uri, query)
