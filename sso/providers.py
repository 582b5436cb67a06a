from __future__ import annotations

from sso.models import (
    ClientAuthScheme,
    ClientRegistration,
    ResourceServerConfig,
    TokenPlacement,
)

FACEBOOK_AUTHORIZE_URL = "https://www.facebook.com/dialog/oauth"
FACEBOOK_TOKEN_URL = "https://graph.facebook.com/oauth/access_token"
FACEBOOK_USER_INFO_URL = "https://graph.facebook.com/me"
FACEBOOK_REDIRECT_PATH = "/login/facebook"


def facebook_registration(
    client_id: str,
    client_secret: str,
    *,
    scope: tuple[str, ...] = ("public_profile",),
    redirect_path: str = FACEBOOK_REDIRECT_PATH,
) -> ClientRegistration:
    return ClientRegistration(
        client_id=client_id,
        client_secret=client_secret,
        authorization_uri=FACEBOOK_AUTHORIZE_URL,
        token_uri=FACEBOOK_TOKEN_URL,
        redirect_path=redirect_path,
        scope=scope,
        token_param_name="oauth_token",
        client_auth_scheme=ClientAuthScheme.FORM,
        scope_separator=",",
    )


def facebook_resource() -> ResourceServerConfig:
    return ResourceServerConfig(
        user_info_uri=FACEBOOK_USER_INFO_URL,
        token_placement=TokenPlacement.QUERY,
    )
