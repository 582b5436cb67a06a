"""Session cookie signing. The cookie value is ``<session id>.<signature>``."""

from __future__ import annotations

import base64
import hashlib
import hmac


class BadSignature(ValueError):
    pass


def derive_key(session_secret: str) -> bytes:
    return hashlib.sha256(b"sso-session-cookie:" + session_secret.encode()).digest()


def _signature(session_id: str, key: bytes) -> str:
    digest = hmac.new(key, session_id.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def sign_session_id(session_id: str, key: bytes) -> str:
    return f"{session_id}.{_signature(session_id, key)}"


def unsign_session_id(value: str, key: bytes) -> str:
    # Session ids come from secrets.token_urlsafe and never contain a dot.
    session_id, sep, signature = value.rpartition(".")
    if not sep or not session_id:
        raise BadSignature("Session cookie carries no signature.")
    expected = _signature(session_id, key)
    if not hmac.compare_digest(signature.encode(), expected.encode()):
        raise BadSignature("Session cookie signature does not match.")
    return session_id
