"""Persistence interface for the OAuth server.

The grant engine only talks to storage through :class:`Store`. Any backend
(SQL, DynamoDB, Redis, ...) can be plugged in as long as it honors two
atomicity guarantees:

- :meth:`Store.redeem_authorization_code` checks that a code is unconsumed,
  marks it consumed, and persists the issued tokens as one exclusive step.
  Two racing redemptions of the same code must yield exactly one ``True``.
- :meth:`Store.rotate_refresh_token` removes the old refresh token and
  persists the replacement pair as one exclusive step.

:class:`InMemoryStore` implements the interface with an ``asyncio.Lock`` and
is used for development and tests.
"""

import asyncio
from typing import Dict, Iterable, Optional, Protocol

from .models import AccessToken, AuthorizationCode, Client, RefreshToken, User


class Store(Protocol):
    """Port for clients, users, authorization codes and tokens."""

    async def get_client(self, client_id: str) -> Optional[Client]: ...

    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def get_user_by_username(self, username: str) -> Optional[User]: ...

    async def save_authorization_code(self, code: AuthorizationCode) -> None: ...

    async def get_authorization_code(self, code: str) -> Optional[AuthorizationCode]: ...

    async def redeem_authorization_code(
        self, code: str, access_token: AccessToken, refresh_token: Optional[RefreshToken]
    ) -> bool: ...

    async def save_token(self, access_token: AccessToken, refresh_token: Optional[RefreshToken] = None) -> None: ...

    async def get_access_token(self, token_id: str) -> Optional[AccessToken]: ...

    async def get_refresh_token(self, token: str) -> Optional[RefreshToken]: ...

    async def rotate_refresh_token(self, old_token: str, access_token: AccessToken, refresh_token: RefreshToken) -> bool: ...

    async def revoke_access_token(self, token_id: str) -> bool: ...

    async def find_access_token(self, client_id: str, user_id: str) -> Optional[AccessToken]: ...


class InMemoryStore:
    """In-memory store suitable for development and testing.

    Records are copied on the way in and out so callers can never mutate
    stored state without going through the store.
    """

    def __init__(self, clients: Iterable[Client] = (), users: Iterable[User] = ()) -> None:
        self._lock = asyncio.Lock()
        self._clients: Dict[str, Client] = {c.id: c for c in clients}
        self._users: Dict[str, User] = {u.id: u.model_copy() for u in users}
        self._codes: Dict[str, AuthorizationCode] = {}
        self._access_tokens: Dict[str, AccessToken] = {}
        self._refresh_tokens: Dict[str, RefreshToken] = {}

    # Registration (external to the engine)

    async def save_client(self, client: Client) -> None:
        self._clients[client.id] = client

    async def save_user(self, user: User) -> None:
        self._users[user.id] = user.model_copy()

    # Store interface

    async def get_client(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy() if user else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self._users.values():
            if user.username == username:
                return user.model_copy()
        return None

    async def save_authorization_code(self, code: AuthorizationCode) -> None:
        self._codes[code.code] = code.model_copy()

    async def get_authorization_code(self, code: str) -> Optional[AuthorizationCode]:
        rec = self._codes.get(code)
        return rec.model_copy() if rec else None

    async def redeem_authorization_code(
        self, code: str, access_token: AccessToken, refresh_token: Optional[RefreshToken]
    ) -> bool:
        async with self._lock:
            rec = self._codes.get(code)
            if rec is None or rec.consumed:
                return False
            self._codes[code] = rec.model_copy(update={"consumed": True})
            self._put_tokens(access_token, refresh_token)
        return True

    async def save_token(self, access_token: AccessToken, refresh_token: Optional[RefreshToken] = None) -> None:
        async with self._lock:
            self._put_tokens(access_token, refresh_token)

    async def get_access_token(self, token_id: str) -> Optional[AccessToken]:
        rec = self._access_tokens.get(token_id)
        return rec.model_copy() if rec else None

    async def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        rec = self._refresh_tokens.get(token)
        return rec.model_copy() if rec else None

    async def rotate_refresh_token(self, old_token: str, access_token: AccessToken, refresh_token: RefreshToken) -> bool:
        async with self._lock:
            if self._refresh_tokens.pop(old_token, None) is None:
                return False
            self._put_tokens(access_token, refresh_token)
        return True

    async def revoke_access_token(self, token_id: str) -> bool:
        async with self._lock:
            return self._access_tokens.pop(token_id, None) is not None

    async def find_access_token(self, client_id: str, user_id: str) -> Optional[AccessToken]:
        matches = [t for t in self._access_tokens.values() if t.client_id == client_id and t.user_id == user_id]
        if not matches:
            return None
        return max(matches, key=lambda t: t.issued_at).model_copy()

    def _put_tokens(self, access_token: AccessToken, refresh_token: Optional[RefreshToken]) -> None:
        self._access_tokens[access_token.id] = access_token.model_copy()
        if refresh_token is not None:
            self._refresh_tokens[refresh_token.token] = refresh_token.model_copy()
