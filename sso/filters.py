from __future__ import annotations

from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from sso import signed_token
from sso.constants import LOGGER, SESSION_COOKIE_NAME
from sso.errors import InvalidStateError, SsoError
from sso.flow import SsoFlow
from sso.models import AuthenticationRequired, Principal
from sso.sessions import SsoSession


def get_principal(request: Request) -> Principal | None:
    """The authenticated principal for this request, if any."""
    return getattr(request.state, "principal", None)


def _resume_path(request: Request) -> str:
    path = request.url.path
    if request.url.query:
        return f"{path}?{request.url.query}"
    return path


class SsoAuthenticationFilter(BaseHTTPMiddleware):
    """Owns the session cookie and the login, callback and logout paths.

    Must be installed outside ``RedirectExceptionFilter``: it attaches the
    session that the inner filter checks.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        flow: SsoFlow,
        session_secret: str,
        logout_path: str = "/logout",
        cookie_name: str = SESSION_COOKIE_NAME,
    ) -> None:
        super().__init__(app)
        self.flow = flow
        self.logout_path = logout_path
        self.cookie_name = cookie_name
        self._session_key = signed_token.derive_key(session_secret)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        session_id = self._read_session_id(request)
        session = await self.flow.resolve(session_id)
        request.state.sso_session = session
        request.state.principal = session.principal

        path = request.url.path
        if path == self.flow.registration.redirect_path and request.method == "GET":
            response = await self._handle_login(request, session)
        elif path == self.logout_path and request.method == "POST":
            async with session.lock:
                await self.flow.logout(session)
            response = RedirectResponse(url="/", status_code=302)
        else:
            response = await call_next(request)

        if session.session_id != session_id and session.session_id in self.flow.sessions:
            self._set_cookie(request, response, session.session_id)
        return response

    async def _handle_login(self, request: Request, session: SsoSession) -> Response:
        params = request.query_params
        async with session.lock:
            if "code" not in params and "error" not in params:
                url = self.flow.begin_login(session, str(request.base_url))
                return RedirectResponse(url=url, status_code=302)

            try:
                target = await self.flow.complete_login(session, params)
            except InvalidStateError as error:
                LOGGER.warning("Rejected login callback: %s", error)
                return JSONResponse(
                    {
                        "error": "invalid_state",
                        "error_description": "Login request could not be verified.",
                    },
                    status_code=400,
                )
            except SsoError as error:
                LOGGER.warning("Login failed (%s): %s", type(error).__name__, error)
                return RedirectResponse(url=self.flow.failure_url, status_code=302)

        return RedirectResponse(url=target, status_code=302)

    def _read_session_id(self, request: Request) -> str | None:
        raw = request.cookies.get(self.cookie_name)
        if not raw:
            return None
        try:
            return signed_token.unsign_session_id(raw, self._session_key)
        except signed_token.BadSignature as error:
            LOGGER.warning("Ignoring session cookie: %s", error)
            return None

    def _set_cookie(self, request: Request, response: Response, session_id: str) -> None:
        response.set_cookie(
            self.cookie_name,
            signed_token.sign_session_id(session_id, self._session_key),
            httponly=True,
            samesite="lax",
            secure=request.url.scheme == "https",
            path="/",
        )


class RedirectExceptionFilter(BaseHTTPMiddleware):
    """Sends anonymous requests for protected paths to the authorization server."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        flow: SsoFlow,
        protected_paths: Iterable[str],
    ) -> None:
        super().__init__(app)
        self.flow = flow
        self.protected_paths = tuple(protected_paths)

    def is_protected(self, path: str) -> bool:
        for protected in self.protected_paths:
            if path == protected or path.startswith(protected.rstrip("/") + "/"):
                return True
        return False

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.is_protected(request.url.path):
            return await call_next(request)

        session: SsoSession | None = getattr(request.state, "sso_session", None)
        if session is None:
            raise RuntimeError("RedirectExceptionFilter requires SsoAuthenticationFilter outside it.")

        result = self.flow.check(session, _resume_path(request))
        if isinstance(result, AuthenticationRequired):
            async with session.lock:
                url = self.flow.begin_login(
                    session,
                    str(request.base_url),
                    return_to=result.resume_path,
                )
            return RedirectResponse(url=url, status_code=302)

        request.state.principal = result
        return await call_next(request)
