from __future__ import annotations

import time
from typing import Mapping

from sso.authorize import build_authorization_url, build_redirect_uri
from sso.constants import LOGGER, SESSION_SWEEP_INTERVAL_SECONDS
from sso.errors import AuthorizationDeniedError, SsoError, UnauthenticatedError
from sso.models import (
    AuthenticationRequired,
    ClientRegistration,
    Principal,
    ResourceServerConfig,
    SsoStatus,
)
from sso.resource_client import ResourceClient
from sso.sessions import SessionStore, SsoSession
from sso.state_store import AuthorizationStateStore
from sso.token_client import TokenExchangeClient
from sso.token_store import TokenStore


class SsoFlow:
    """Per-session login state machine.

    ANONYMOUS -> AWAITING_CALLBACK -> AUTHENTICATED, or FAILED on any error.
    A FAILED session drops back to ANONYMOUS the next time it is resolved.
    Sessions are only stored once a login starts; until then ``resolve`` hands
    out a transient anonymous session.
    Callers hold ``session.lock`` around the mutating operations.
    """

    def __init__(
        self,
        *,
        registration: ClientRegistration,
        resource_config: ResourceServerConfig,
        token_client: TokenExchangeClient,
        resource_client: ResourceClient,
        state_store: AuthorizationStateStore,
        token_store: TokenStore,
        session_store: SessionStore,
        public_url: str | None = None,
        success_url: str = "/",
        failure_url: str = "/?error",
        sweep_interval_seconds: float = SESSION_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.registration = registration
        self.resource_config = resource_config
        self.token_client = token_client
        self.resource_client = resource_client
        self.state_store = state_store
        self.token_store = token_store
        self.sessions = session_store
        self.public_url = public_url.rstrip("/") if public_url else None
        self.success_url = success_url
        self.failure_url = failure_url
        self.sweep_interval_seconds = sweep_interval_seconds
        self._last_sweep = 0.0

    async def resolve(self, session_id: str | None) -> SsoSession:
        await self._sweep_if_due()
        session = self.sessions.lookup(session_id)
        if session is None:
            return self.sessions.new_session()
        if session.status is SsoStatus.FAILED:
            LOGGER.info("Session %s re-entering anonymous state after failed login", session.session_id)
            session.reset()
        return session

    def redirect_uri(self, base_url: str) -> str:
        return build_redirect_uri(self.public_url or base_url, self.registration.redirect_path)

    def check(self, session: SsoSession, requested_path: str) -> Principal | AuthenticationRequired:
        if session.status is SsoStatus.AUTHENTICATED and session.principal is not None:
            return session.principal
        return AuthenticationRequired(resume_path=requested_path)

    def begin_login(
        self,
        session: SsoSession,
        base_url: str,
        *,
        return_to: str | None = None,
    ) -> str:
        if session.status is SsoStatus.AUTHENTICATED:
            return return_to or self.success_url

        self.sessions.persist(session)
        if return_to:
            session.return_to = return_to

        redirect_uri = self.redirect_uri(base_url)
        state = self.state_store.issue(session.session_id, redirect_uri)
        url = build_authorization_url(self.registration, state, redirect_uri)
        session.status = SsoStatus.AWAITING_CALLBACK
        LOGGER.info("Redirecting session %s to the authorization server", session.session_id)
        return url

    async def complete_login(self, session: SsoSession, params: Mapping[str, str]) -> str:
        """Handle the authorization server callback and return the redirect target."""
        if session.status is SsoStatus.AUTHENTICATED:
            return self.success_url

        error = params.get("error")
        if error:
            # An error callback whose state does not verify leaves a pending login alone.
            self.state_store.consume(session.session_id, params.get("state"))
            await self._fail(session)
            raise AuthorizationDeniedError(error, params.get("error_description"))

        try:
            token = await self.token_client.exchange_code(
                params.get("code", ""),
                params.get("state"),
                session_id=session.session_id,
            )
            principal, token = await self.resource_client.fetch_principal(
                token, self.resource_config
            )
        except SsoError:
            await self._fail(session)
            raise

        previous_id = session.session_id
        self.sessions.rotate(session)
        self.state_store.discard(previous_id)
        await self.token_store.delete(previous_id)
        await self.token_store.set(session.session_id, token)

        session.principal = principal
        session.status = SsoStatus.AUTHENTICATED
        target = session.return_to or self.success_url
        session.return_to = None
        LOGGER.info("Authenticated subject %s", principal.subject_id)
        return target

    async def refresh_principal(self, session: SsoSession) -> Principal:
        """Re-read the principal with the held token, saving any refreshed token."""
        if session.status is not SsoStatus.AUTHENTICATED:
            raise UnauthenticatedError("Session is not authenticated.")

        token = await self.token_store.get(session.session_id)
        if token is None:
            await self._fail(session)
            raise UnauthenticatedError("No access token is held for this session.")

        try:
            principal, current = await self.resource_client.fetch_principal(
                token, self.resource_config
            )
        except UnauthenticatedError:
            await self._fail(session)
            raise

        if current is not token:
            await self.token_store.set(session.session_id, current)
        session.principal = principal
        return principal

    async def logout(self, session: SsoSession) -> None:
        previous_id = session.session_id
        self.state_store.discard(previous_id)
        await self.token_store.delete(previous_id)
        session.reset()
        if previous_id in self.sessions:
            self.sessions.rotate(session)

    async def expire_idle(self) -> None:
        self._last_sweep = time.monotonic()
        self.state_store.cleanup()
        for session_id in self.sessions.expired_ids():
            self.sessions.delete(session_id)
            self.state_store.discard(session_id)
            await self.token_store.delete(session_id)

    async def _sweep_if_due(self) -> None:
        if time.monotonic() - self._last_sweep >= self.sweep_interval_seconds:
            await self.expire_idle()

    async def _fail(self, session: SsoSession) -> None:
        self.state_store.discard(session.session_id)
        await self.token_store.delete(session.session_id)
        session.principal = None
        session.return_to = None
        session.status = SsoStatus.FAILED
