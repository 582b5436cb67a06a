from __future__ import annotations

from abc import ABC, abstractmethod

from sso.models import TokenContext


class TokenStore(ABC):
    @abstractmethod
    async def get(self, session_id: str) -> TokenContext | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, session_id: str, token: TokenContext) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    """Process-local token storage; contents do not survive a restart."""

    def __init__(self) -> None:
        self._tokens: dict[str, TokenContext] = {}

    async def get(self, session_id: str) -> TokenContext | None:
        return self._tokens.get(session_id)

    async def set(self, session_id: str, token: TokenContext) -> None:
        self._tokens[session_id] = token

    async def delete(self, session_id: str) -> None:
        self._tokens.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._tokens)
