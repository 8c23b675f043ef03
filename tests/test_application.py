"""Unit tests for core_oauth.application

Test Coverage:
- Owner-gated credential fields on ApplicationView
- resolve_oauth_authorization session derivation
"""

from datetime import timedelta

import pytest

from core_oauth.application import ApplicationView, resolve_oauth_authorization
from core_oauth.models import AccessToken, ApplicationType, User

from conftest import NOW


@pytest.fixture
def owner() -> User:
    return User(id="7", account_id="acct-owner")


@pytest.fixture
def stranger() -> User:
    return User(id="8", account_id="acct-other")


# ============================================================================
# OWNER GATING
# ============================================================================


def test_view_for_owner(oauth_client, owner):
    view = ApplicationView.from_client(oauth_client, owner)

    assert view.client_id == "abc"
    assert view.client_secret == oauth_client.secret
    assert view.callback_url == "https://x/cb"
    assert view.api_key is None  # OAuth apps carry no API key


def test_view_for_owner_api_key_application(oauth_client, owner):
    client = oauth_client.model_copy(update={"type": ApplicationType.API_KEY, "api_key": "k-123"})

    assert ApplicationView.from_client(client, owner).api_key == "k-123"


@pytest.mark.parametrize("requester_name", ["stranger", None])
def test_view_hides_credentials(oauth_client, stranger, requester_name):
    requester = stranger if requester_name else None
    view = ApplicationView.from_client(oauth_client, requester)

    assert view.client_id is None
    assert view.client_secret is None
    assert view.callback_url is None
    assert view.api_key is None

    # Public fields are always visible
    assert view.id == "abc"
    assert view.legacy_id == 7
    assert view.type == ApplicationType.OAUTH
    assert view.name == "Example App"
    assert view.description == "Example OAuth application"
    assert view.account_id == "acct-owner"


def test_rotated_secret_visible_to_owner(oauth_client, owner):
    rotated = oauth_client.rotate_secret("sha256:" + "0" * 64)

    assert ApplicationView.from_client(rotated, owner).client_secret == "sha256:" + "0" * 64
    assert oauth_client.secret != rotated.secret


# ============================================================================
# OAUTH AUTHORIZATION
# ============================================================================


def make_token(token_id: str, issued_at=NOW, lifetime=3600) -> AccessToken:
    return AccessToken(
        id=token_id,
        client_id="abc",
        user_id="42",
        scope="read",
        issued_at=issued_at,
        expires_at=issued_at + timedelta(seconds=lifetime),
    )


@pytest.mark.asyncio
async def test_resolve_authorization(store, oauth_client, user):
    await store.save_token(make_token("older"))
    await store.save_token(make_token("newer", issued_at=NOW + timedelta(minutes=10)))

    session = await resolve_oauth_authorization(store, oauth_client, user, now=NOW + timedelta(minutes=15))

    assert session.account_id == "acct-42"
    assert session.application.id == "abc"
    assert session.created_at == NOW + timedelta(minutes=10)
    assert session.expires_at == NOW + timedelta(minutes=10, seconds=3600)
    # The user does not own the application
    assert session.application.client_secret is None


@pytest.mark.asyncio
async def test_resolve_authorization_signed_out(store, oauth_client):
    await store.save_token(make_token("t1"))

    assert await resolve_oauth_authorization(store, oauth_client, None, now=NOW) is None


@pytest.mark.asyncio
async def test_resolve_authorization_without_token(store, oauth_client, user):
    assert await resolve_oauth_authorization(store, oauth_client, user, now=NOW) is None


@pytest.mark.asyncio
async def test_resolve_authorization_expired(store, oauth_client, user):
    await store.save_token(make_token("t1", lifetime=60))

    assert await resolve_oauth_authorization(store, oauth_client, user, now=NOW + timedelta(seconds=60)) is None
