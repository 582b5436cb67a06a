from __future__ import annotations

import html
import os
from contextlib import asynccontextmanager

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response
from starlette.routing import Route

from sso.errors import ResourceAccessError, UnauthenticatedError
from sso.filters import RedirectExceptionFilter, SsoAuthenticationFilter, get_principal
from sso.flow import SsoFlow
from sso.resource_client import ResourceClient
from sso.sessions import SessionStore
from sso.state_store import AuthorizationStateStore
from sso.token_client import TokenExchangeClient
from sso.token_store import MemoryTokenStore
from ssoapp.constants import APP_VERSION, AUTH_MODE, LOGGER
from ssoapp.env import (
    load_env,
    load_http_timeout,
    load_max_retries,
    load_protected_paths,
    load_public_url,
    load_registration,
    load_resource_config,
    load_session_idle_seconds,
    load_state_ttl_seconds,
    setup_logging,
    validate_env,
)


def _render_home(request: Request, login_path: str) -> str:
    principal = get_principal(request)
    if principal is not None:
        return (
            "<h1>Demo</h1>"
            f"<p>Logged in as: <span id='user'>{html.escape(principal.display_name)}</span></p>"
            "<form action='/logout' method='post'><button type='submit'>Logout</button></form>"
        )

    notice = ""
    if "error" in request.query_params:
        notice = "<p class='error'>There was an error logging in. Please try again.</p>"
    return (
        "<h1>Demo</h1>"
        f"{notice}"
        f"<p>Login with: <a href='{html.escape(login_path)}'>Facebook</a></p>"
    )


def build_routes(flow: SsoFlow) -> list[Route]:
    async def home_route(request: Request) -> Response:
        return HTMLResponse(_render_home(request, flow.registration.redirect_path))

    async def user_route(request: Request) -> Response:
        session = request.state.sso_session
        async with session.lock:
            try:
                principal = await flow.refresh_principal(session)
            except UnauthenticatedError:
                return JSONResponse({"error": "unauthenticated"}, status_code=401)
            except ResourceAccessError as error:
                LOGGER.warning("User info unavailable: %s", error)
                return JSONResponse({"error": "user_info_unavailable"}, status_code=502)
        return JSONResponse({"id": principal.subject_id, "name": principal.display_name})

    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse(
            {
                "status": "ok",
                "version": APP_VERSION,
                "auth_mode": AUTH_MODE,
            }
        )

    return [
        Route("/", home_route, methods=["GET"]),
        Route("/user", user_route, methods=["GET"]),
        Route("/health", health_route, methods=["GET"]),
    ]


def build_flow(transport: httpx.AsyncBaseTransport | None = None) -> SsoFlow:
    registration = load_registration()
    resource_config = load_resource_config()
    timeout = load_http_timeout()
    max_retries = load_max_retries()

    state_store = AuthorizationStateStore(ttl_seconds=load_state_ttl_seconds())
    token_client = TokenExchangeClient(
        registration,
        state_store,
        transport=transport,
        timeout=timeout,
        max_retries=max_retries,
    )
    resource_client = ResourceClient(
        registration,
        token_client,
        transport=transport,
        timeout=timeout,
        max_retries=max_retries,
    )
    return SsoFlow(
        registration=registration,
        resource_config=resource_config,
        token_client=token_client,
        resource_client=resource_client,
        state_store=state_store,
        token_store=MemoryTokenStore(),
        session_store=SessionStore(idle_seconds=load_session_idle_seconds()),
        public_url=load_public_url(),
    )


def create_app(transport: httpx.AsyncBaseTransport | None = None) -> Starlette:
    load_env()
    setup_logging()
    validate_env()

    flow = build_flow(transport)

    @asynccontextmanager
    async def lifespan(app: Starlette):
        del app
        try:
            yield
        finally:
            await flow.resource_client.aclose()
            await flow.token_client.aclose()

    # Order matters: the SSO filter attaches the session the redirect filter checks.
    middleware = [
        Middleware(
            SsoAuthenticationFilter,
            flow=flow,
            session_secret=os.getenv("SSO_SESSION_SECRET", ""),
        ),
        Middleware(
            RedirectExceptionFilter,
            flow=flow,
            protected_paths=load_protected_paths(),
        ),
    ]
    app = Starlette(routes=build_routes(flow), middleware=middleware, lifespan=lifespan)
    app.state.sso_flow = flow
    LOGGER.info(
        "SSO ready: login path %s, protected paths %s",
        flow.registration.redirect_path,
        ", ".join(load_protected_paths()),
    )
    return app


def main() -> None:
    host = os.getenv("APP_HOST", "127.0.0.1")
    port = int(os.getenv("APP_PORT", "8000"))
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
