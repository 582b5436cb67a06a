from __future__ import annotations

import secrets
import time

from sso.constants import DEFAULT_STATE_TTL_SECONDS, LOGGER, MAX_OUTSTANDING_STATES
from sso.errors import InvalidStateError
from sso.models import AuthorizationState


class AuthorizationStateStore:
    """Outstanding anti-CSRF state tokens, bucketed by session."""

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        max_per_session: int = MAX_OUTSTANDING_STATES,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_per_session = max_per_session
        self._states: dict[str, dict[str, AuthorizationState]] = {}

    def issue(self, session_id: str, redirect_uri: str) -> AuthorizationState:
        now = time.time()
        state = AuthorizationState(
            state_token=secrets.token_urlsafe(24),
            session_id=session_id,
            redirect_uri=redirect_uri,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self.add(state)
        return state

    def add(self, state: AuthorizationState) -> None:
        bucket = self._states.setdefault(state.session_id, {})
        bucket[state.state_token] = state
        while len(bucket) > self.max_per_session:
            oldest = min(bucket.values(), key=lambda item: item.created_at)
            del bucket[oldest.state_token]

    def consume(self, session_id: str, state_token: str | None) -> AuthorizationState:
        if not state_token:
            raise InvalidStateError("Callback is missing the state parameter.")

        bucket = self._states.get(session_id, {})
        state = bucket.pop(state_token, None)
        if not bucket:
            self._states.pop(session_id, None)

        if state is None:
            raise InvalidStateError("Unknown state for this session.")
        if state.is_expired():
            LOGGER.warning("Rejected expired authorization state for session %s", session_id)
            raise InvalidStateError("Authorization state expired.")
        return state

    def outstanding(self, session_id: str) -> list[AuthorizationState]:
        return list(self._states.get(session_id, {}).values())

    def discard(self, session_id: str) -> None:
        self._states.pop(session_id, None)

    def cleanup(self) -> int:
        now = time.time()
        removed = 0
        for session_id in list(self._states):
            bucket = self._states[session_id]
            expired = [token for token, state in bucket.items() if state.is_expired(now)]
            for token in expired:
                del bucket[token]
            removed += len(expired)
            if not bucket:
                del self._states[session_id]
        return removed

    def __contains__(self, state_token: str) -> bool:
        return any(state_token in bucket for bucket in self._states.values())
