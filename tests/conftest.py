from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest
from starlette.requests import Request

from core_oauth.codec import JwtTokenCodec
from core_oauth.constants import (
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_PASSWORD,
    GRANT_REFRESH_TOKEN,
)
from core_oauth.models import Client, User
from core_oauth.request import FORM_CONTENT_TYPE, OAuthRequest
from core_oauth.security import hash_client_secret, hash_password
from core_oauth.server import OAuth2Server
from core_oauth.store import InMemoryStore

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

CLIENT_ID = "abc"
CLIENT_SECRET = "abc-client-secret"
REDIRECT_URI = "https://x/cb"
USER_ID = "42"
USERNAME = "alice"
PASSWORD = "correct horse battery staple"

KID = "HS256-2024-01-01"
SIGNING_KEY = "test-signing-key-0123456789abcdef0123456789"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def form_request(body: Dict[str, str], headers: Optional[Dict[str, str]] = None) -> OAuthRequest:
    """POST form request as the token endpoint receives it."""
    all_headers = {"Content-Type": FORM_CONTENT_TYPE}
    all_headers.update(headers or {})
    return OAuthRequest(method="POST", headers=all_headers, body=body)


def bearer_request(token: str) -> OAuthRequest:
    return OAuthRequest(headers={"Authorization": f"Bearer {token}"})


def make_starlette_request(method="GET", path="/", query=b"", headers=None, body=b"") -> Request:
    """Bare Starlette request for exercising adapters and guards without an app."""
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query,
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()],
    }

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(scope="session")
def password_hash() -> str:
    return hash_password(PASSWORD)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def oauth_client() -> Client:
    return Client(
        id=CLIENT_ID,
        secret=hash_client_secret(CLIENT_SECRET),
        redirect_uris=[REDIRECT_URI],
        grants=[GRANT_AUTHORIZATION_CODE, GRANT_REFRESH_TOKEN, GRANT_CLIENT_CREDENTIALS, GRANT_PASSWORD],
        account_id="acct-owner",
        legacy_id=7,
        name="Example App",
        description="Example OAuth application",
        scopes=["read", "write"],
    )


@pytest.fixture
def user(password_hash) -> User:
    return User(id=USER_ID, account_id="acct-42", username=USERNAME, password_hash=password_hash)


@pytest.fixture
def store(oauth_client, user) -> InMemoryStore:
    return InMemoryStore(clients=[oauth_client], users=[user])


@pytest.fixture
def codec(clock) -> JwtTokenCodec:
    return JwtTokenCodec({KID: SIGNING_KEY}, KID, clock=clock)


@pytest.fixture
def server(store, codec, clock) -> OAuth2Server:
    return OAuth2Server(store=store, codec=codec, clock=clock)
