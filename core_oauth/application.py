"""Consumer-facing view of registered OAuth applications.

Used by API layers that list applications to their owners and to the users
that authorized them. Credentials are only disclosed to the owning account:

- public: ``id``, ``legacy_id``, ``type``, ``name``, ``description``, ``account_id``
- owner only: ``api_key``, ``client_id``, ``client_secret``, ``callback_url``
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

import structlog

from .models import ApplicationType, Client, User, utc_now
from .store import Store

log = structlog.get_logger(__name__)


def is_owner(client: Client, requester: Optional[User]) -> bool:
    return requester is not None and requester.account_id == client.account_id


class ApplicationView(BaseModel):
    id: str = Field(..., description="Application identifier")
    legacy_id: Optional[int] = Field(None, description="Numeric identifier")
    type: ApplicationType = Field(..., description="Application type")
    name: Optional[str] = Field(None, description="Display name")
    description: Optional[str] = Field(None, description="Display description")
    account_id: str = Field(..., description="Owning account")

    api_key: Optional[str] = Field(None, description="API key, owner only")
    client_id: Optional[str] = Field(None, description="OAuth client id, owner only")
    client_secret: Optional[str] = Field(None, description="Stored client secret, owner only")
    callback_url: Optional[str] = Field(None, description="Registered callback URL, owner only")

    @classmethod
    def from_client(cls, client: Client, requester: Optional[User]) -> "ApplicationView":
        """Project a Client for a requester, hiding credentials from non-owners.

        Args:
            client (Client): Registered application.
            requester (Optional[User]): Signed-in user, or None.

        Returns:
            ApplicationView: View with owner-gated fields set only for the owner.
        """
        view = cls(
            id=client.id,
            legacy_id=client.legacy_id,
            type=client.type,
            name=client.name,
            description=client.description,
            account_id=client.account_id,
        )
        if not is_owner(client, requester):
            return view
        return view.model_copy(
            update={
                "api_key": client.api_key,
                "client_id": client.id,
                "client_secret": client.secret,
                "callback_url": client.callback_url,
            }
        )


class Session(BaseModel):
    """A user's live authorization of an application. Derived, never stored."""

    account_id: str
    application: ApplicationView
    expires_at: datetime
    created_at: datetime
    updated_at: datetime


async def resolve_oauth_authorization(
    store: Store, client: Client, requester: Optional[User], now: Optional[datetime] = None
) -> Optional[Session]:
    """Return the requester's current authorization of ``client``.

    Args:
        store (Store): Token store.
        client (Client): Application being inspected.
        requester (Optional[User]): Signed-in user, or None.
        now (Optional[datetime]): Current time, for expiry.

    Returns:
        Optional[Session]: The session, or None when signed out, when the user
        never authorized the application, or when the latest token has expired.
    """
    if requester is None:
        return None

    token = await store.find_access_token(client.id, requester.id)
    if token is None or token.is_expired(now or utc_now()):
        return None

    log.debug("Resolved OAuth authorization", details={"client_id": client.id, "user_id": requester.id})
    return Session(
        account_id=requester.account_id,
        application=ApplicationView.from_client(client, requester),
        expires_at=token.expires_at,
        created_at=token.issued_at,
        updated_at=token.issued_at,
    )
