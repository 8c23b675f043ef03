"""Data model for the OAuth server.

Records persisted by the :class:`~core_oauth.store.Store` (clients, users,
authorization codes, access and refresh tokens) and the value objects the
grant engine hands back to its callers (:class:`TokenResult`,
:class:`Principal`).

All instants are timezone-aware UTC datetimes. A record is expired when the
current time is at or past its ``expires_at``; expiry is always evaluated at
validation time, never by a background sweep.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import BEARER_TOKEN_TYPE


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_scope(scope: Optional[str]) -> List[str]:
    """Split a space-delimited scope string into its unique, ordered parts.

    Args:
        scope (Optional[str]): Scope parameter, e.g. ``"read write"``.

    Returns:
        List[str]: Scopes in request order with duplicates removed.
    """
    if not scope:
        return []
    parts: List[str] = []
    for s in scope.split(" "):
        s = s.strip()
        if s and s not in parts:
            parts.append(s)
    return parts


class ApplicationType(str, Enum):
    """Kind of registered application."""

    API_KEY = "API_KEY"
    OAUTH = "OAUTH"


class Client(BaseModel):
    """A registered OAuth application.

    Clients are immutable; rotating the secret produces a new instance that the
    caller persists.

    Attributes:
        id (str): OAuth client identifier (``client_id``).
        secret (Optional[str]): Stored secret hash. None for public clients.
        redirect_uris (List[str]): Registered redirect URIs, matched exactly.
        grants (List[str]): Grant types this client may use.
        account_id (str): Owning account.
        scopes (List[str]): Scopes the client may request. Empty means unrestricted.
        public (bool): Public client that is exempt from client authentication.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="OAuth client identifier")
    secret: Optional[str] = Field(None, description="Stored client secret hash", repr=False)
    redirect_uris: List[str] = Field(default_factory=list, description="Registered redirect URIs")
    grants: List[str] = Field(default_factory=list, description="Allowed grant types")
    account_id: str = Field(..., description="Owning account identifier")

    legacy_id: Optional[int] = Field(None, description="Numeric identifier of the application")
    type: ApplicationType = Field(ApplicationType.OAUTH, description="Application type")
    name: Optional[str] = Field(None, description="Display name")
    description: Optional[str] = Field(None, description="Display description")
    api_key: Optional[str] = Field(None, description="API key for API_KEY applications", repr=False)
    scopes: List[str] = Field(default_factory=list, description="Scopes this client may request")
    public: bool = Field(False, description="Public client exempt from client authentication")

    @property
    def callback_url(self) -> Optional[str]:
        return self.redirect_uris[0] if self.redirect_uris else None

    def allows_grant(self, grant_type: str) -> bool:
        return grant_type in self.grants

    def allows_scope(self, scope: Optional[str]) -> bool:
        """Return True if every requested scope is one of the client's scopes."""
        if not self.scopes:
            return True
        return set(parse_scope(scope)) <= set(self.scopes)

    def rotate_secret(self, secret_hash: str) -> "Client":
        """Return a copy of this client carrying a new secret hash."""
        return self.model_copy(update={"secret": secret_hash})


class User(BaseModel):
    """A resource owner that can sign in and authorize clients."""

    id: str = Field(..., description="User identifier")
    account_id: str = Field(..., description="Linked account identifier")
    username: Optional[str] = Field(None, description="Login name for the password grant")
    password_hash: Optional[str] = Field(None, description="bcrypt password hash", exclude=True, repr=False)


class AuthorizationCode(BaseModel):
    code: str = Field(..., description="Authorization code value")
    client_id: str = Field(..., description="Client the code was issued to")
    user_id: str = Field(..., description="User that authorized the client")
    redirect_uri: str = Field(..., description="Redirect URI the code is bound to")
    scope: Optional[str] = Field(None, description="Granted scope")
    issued_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    consumed: bool = Field(False, description="Set once the code has been exchanged")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at


class AccessToken(BaseModel):
    id: str = Field(..., description="Opaque access token identifier")
    client_id: str
    user_id: Optional[str] = Field(None, description="None for client credential tokens")
    scope: Optional[str] = None
    issued_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at


class RefreshToken(BaseModel):
    token: str = Field(..., description="Refresh token value")
    client_id: str
    user_id: Optional[str] = None
    scope: Optional[str] = None
    issued_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at


class TokenResult(BaseModel):
    """Successful token exchange (RFC 6749 Section 5.1).

    ``access`` and ``refresh`` are the stored records; they are excluded from
    the serialized response body.
    """

    access_token: str = Field(description="Signed bearer token")
    token_type: str = Field(default=BEARER_TOKEN_TYPE, description="The type of token issued")
    expires_in: int = Field(description="Token lifetime in seconds")
    refresh_token: Optional[str] = Field(default=None, description="The refresh token for obtaining new access tokens")
    scope: Optional[str] = Field(default=None, description="The scope of the access token")

    access: AccessToken = Field(exclude=True)
    refresh: Optional[RefreshToken] = Field(default=None, exclude=True)

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Principal(BaseModel):
    """Identity resolved from an authenticated bearer token."""

    token: AccessToken
    user: Optional[User] = None
    claims: Dict[str, Any] = Field(default_factory=dict)

    @property
    def client_id(self) -> str:
        return self.token.client_id

    @property
    def scope(self) -> Optional[str]:
        return self.token.scope

    @property
    def subject(self) -> str:
        return self.token.user_id or self.token.client_id
