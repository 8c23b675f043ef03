"""OAuth 2.0 grant engine.

:class:`OAuth2Server` implements the three protocol operations against a
pluggable :class:`~core_oauth.store.Store` and :class:`~core_oauth.codec.TokenCodec`:

- ``authorize``    -- RFC 6749 Section 4.1.1: issue a single-use authorization code
  to a signed-in user for a registered client and redirect URI.
- ``token``        -- RFC 6749 Sections 4.1.3, 4.3, 4.4 and 6: exchange a code,
  refresh token, client credentials or user credentials for a bearer token.
- ``authenticate`` -- RFC 6750: resolve the principal behind a bearer token.

The engine is constructed once at startup and passed to whatever needs it;
there is no module level instance. It keeps no mutable state of its own, so a
single instance can serve concurrent requests. Every failure is raised as an
:class:`~core_oauth.exceptions.OAuthError`; anything else escaping the store
or codec is wrapped in :class:`~core_oauth.exceptions.ServerError`.

Authorization code lifecycle::

    Issued --(token exchange)--> Consumed
    Issued --(lifetime lapses, detected at redemption)--> Expired

Example:
    .. code-block:: python

        server = OAuth2Server(store=InMemoryStore(), codec=JwtTokenCodec.from_settings())

        code = await server.authorize(OAuthRequest(query={...}, principal=user))
        result = await server.token(OAuthRequest(method="POST", headers=form_headers, body={...}))
        principal = await server.authenticate(OAuthRequest(headers={"Authorization": f"Bearer {result.access_token}"}))
"""

import base64
import inspect
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, Field

import structlog

from .codec import TokenCodec
from .constants import (
    ACCESS_TOKEN_LIFETIME,
    AUTHORIZATION_CODE_LIFETIME,
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_PASSWORD,
    GRANT_REFRESH_TOKEN,
    OAUTH_REALM,
    REFRESH_TOKEN_LIFETIME,
    SUPPORTED_GRANT_TYPES,
)
from .exceptions import (
    InsufficientScope,
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidScope,
    InvalidToken,
    OAuthError,
    ServerError,
    TokenExpired,
    UnauthorizedClient,
    UnauthorizedRequest,
    UnsupportedGrantType,
    UnsupportedResponseType,
)
from .models import (
    AccessToken,
    AuthorizationCode,
    Client,
    Principal,
    RefreshToken,
    TokenResult,
    User,
    parse_scope,
    utc_now,
)
from .request import OAuthRequest
from .security import verify_client_secret, verify_password
from .store import Store

log = structlog.get_logger(__name__)

AuthenticateHandler = Callable[[OAuthRequest], Any]


class ServerOptions(BaseModel):
    """Engine-wide defaults. Per-call options override any field they set."""

    access_token_lifetime: int = Field(ACCESS_TOKEN_LIFETIME, description="Access token lifetime in seconds")
    refresh_token_lifetime: int = Field(REFRESH_TOKEN_LIFETIME, description="Refresh token lifetime in seconds")
    authorization_code_lifetime: int = Field(AUTHORIZATION_CODE_LIFETIME, description="Authorization code lifetime in seconds")
    always_issue_new_refresh_token: bool = Field(True, description="Rotate refresh tokens on use")
    require_client_authentication: Dict[str, bool] = Field(
        default_factory=dict, description="Per grant type override; grants not listed require authentication"
    )
    allow_empty_state: bool = Field(True, description="Accept authorization requests without a state parameter")
    allow_bearer_tokens_in_query_string: bool = Field(False, description="Accept access_token in the query string")
    grant_types: List[str] = Field(default_factory=lambda: list(SUPPORTED_GRANT_TYPES), description="Enabled grant types")


class AuthorizeOptions(BaseModel):
    authenticate_handler: Optional[AuthenticateHandler] = Field(
        None, description="Resolves the signed-in user; defaults to request.principal"
    )
    allow_empty_state: Optional[bool] = None
    authorization_code_lifetime: Optional[int] = None


class TokenOptions(BaseModel):
    access_token_lifetime: Optional[int] = None
    refresh_token_lifetime: Optional[int] = None
    always_issue_new_refresh_token: Optional[bool] = None
    require_client_authentication: Optional[Dict[str, bool]] = None


class AuthenticateOptions(BaseModel):
    scope: Optional[str] = Field(None, description="Space-delimited scopes the token must carry")
    allow_bearer_tokens_in_query_string: Optional[bool] = None


def _pick(value, default):
    return default if value is None else value


def _new_token_value() -> str:
    return secrets.token_hex(20)


def parse_basic_auth(auth_header: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Parse HTTP Basic client authentication.

    Args:
        auth_header (Optional[str]): Authorization header value.

    Returns:
        Tuple[Optional[str], Optional[str]]: (client_id, client_secret) or (None, None).
    """
    if not auth_header or not auth_header.lower().startswith("basic "):
        return None, None
    try:
        b64 = auth_header.split(" ", 1)[1].strip()
        raw = base64.b64decode(b64, validate=True).decode("utf-8")
        client_id, client_secret = raw.split(":", 1)
        return client_id, client_secret
    except ValueError:
        return None, None


def build_redirect_uri(code: AuthorizationCode, state: Optional[str] = None) -> str:
    """Append ``code`` and ``state`` to the code's redirect URI, keeping its existing query."""
    parts = urlsplit(code.redirect_uri)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in ("code", "state")]
    query.append(("code", code.code))
    if state:
        query.append(("state", state))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class OAuth2Server:
    """Authorization server engine.

    Args:
        store (Store): Persistence for clients, users, codes and tokens.
        codec (TokenCodec): Encoder for bearer tokens.
        options (Optional[ServerOptions]): Engine-wide defaults.
        clock (Callable[[], datetime]): Source of the current UTC time.
    """

    def __init__(
        self,
        store: Store,
        codec: TokenCodec,
        options: Optional[ServerOptions] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.codec = codec
        self.options = options or ServerOptions()
        self._clock = clock
        self._grant_handlers = {
            GRANT_AUTHORIZATION_CODE: self._authorization_code_grant,
            GRANT_REFRESH_TOKEN: self._refresh_token_grant,
            GRANT_CLIENT_CREDENTIALS: self._client_credentials_grant,
            GRANT_PASSWORD: self._password_grant,
        }

    # ------------------------------------------------------------------
    # authorize
    # ------------------------------------------------------------------

    async def authorize(self, request: OAuthRequest, options: Optional[AuthorizeOptions] = None) -> AuthorizationCode:
        """Issue an authorization code to the signed-in user.

        Args:
            request (OAuthRequest): Request carrying ``response_type``, ``client_id``,
                ``redirect_uri``, ``scope`` and ``state``.
            options (Optional[AuthorizeOptions]): Per-call overrides.

        Returns:
            AuthorizationCode: The persisted code. Use :func:`build_redirect_uri` to
            compose the redirect target.

        Raises:
            UnauthorizedRequest: No signed-in user. Checked before anything else.
            InvalidRequest: Missing parameters, unregistered redirect URI, missing state.
            UnsupportedResponseType: ``response_type`` is not ``code``.
            InvalidClient: Unknown client.
            UnauthorizedClient: Client may not use the authorization code grant.
            InvalidScope: Requested scope not allowed for the client.
            ServerError: Store failure.
        """
        return await self._run("authorize", self._authorize(request, options or AuthorizeOptions()))

    async def _authorize(self, request: OAuthRequest, options: AuthorizeOptions) -> AuthorizationCode:
        user = await self._get_signed_in_user(request, options)
        if user is None:
            raise UnauthorizedRequest("Unauthorized request: You must be signed in")

        response_type = request.param("response_type")
        if not response_type:
            raise InvalidRequest("Missing parameter: `response_type`")
        if response_type != "code":
            raise UnsupportedResponseType()

        client_id = request.param("client_id")
        if not client_id:
            raise InvalidRequest("Missing parameter: `client_id`")

        client = await self.store.get_client(client_id)
        if client is None:
            raise InvalidClient("Invalid client: client credentials are invalid")
        if not client.allows_grant(GRANT_AUTHORIZATION_CODE):
            raise UnauthorizedClient("Unauthorized client: `grant_type` is invalid")

        redirect_uri = self._resolve_redirect_uri(client, request.param("redirect_uri"))

        state = request.param("state")
        if not state and not _pick(options.allow_empty_state, self.options.allow_empty_state):
            raise InvalidRequest("Missing parameter: `state`")

        scope = request.param("scope") or None
        self._validate_scope(client, scope)

        now = self._clock()
        lifetime = _pick(options.authorization_code_lifetime, self.options.authorization_code_lifetime)
        code = AuthorizationCode(
            code=_new_token_value(),
            client_id=client.id,
            user_id=user.id,
            redirect_uri=redirect_uri,
            scope=scope,
            issued_at=now,
            expires_at=now + timedelta(seconds=lifetime),
        )
        await self.store.save_authorization_code(code)

        log.info("Authorization code issued", details={"client_id": client.id, "user_id": user.id, "scope": scope})
        return code

    async def _get_signed_in_user(self, request: OAuthRequest, options: AuthorizeOptions) -> Optional[User]:
        if options.authenticate_handler is None:
            return request.principal
        user = options.authenticate_handler(request)
        if inspect.isawaitable(user):
            user = await user
        return user

    @staticmethod
    def _resolve_redirect_uri(client: Client, redirect_uri: Optional[str]) -> str:
        """Return the redirect URI after an exact match against the client's registration."""
        if not redirect_uri:
            if len(client.redirect_uris) == 1:
                return client.redirect_uris[0]
            raise InvalidRequest("Missing parameter: `redirect_uri`")
        if redirect_uri not in client.redirect_uris:
            raise InvalidRequest("Invalid request: `redirect_uri` does not match client value")
        return redirect_uri

    @staticmethod
    def _validate_scope(client: Client, scope: Optional[str]) -> None:
        if not client.allows_scope(scope):
            raise InvalidScope("Invalid scope: requested scope is invalid")

    # ------------------------------------------------------------------
    # token
    # ------------------------------------------------------------------

    async def token(self, request: OAuthRequest, options: Optional[TokenOptions] = None) -> TokenResult:
        """Exchange a grant for an access token.

        Args:
            request (OAuthRequest): POST request with ``grant_type`` and grant specific
                fields, authenticated with Basic auth or ``client_id``/``client_secret``.
            options (Optional[TokenOptions]): Per-call lifetime and rotation overrides.

        Returns:
            TokenResult: Signed access token, optional refresh token, ``expires_in``.

        Raises:
            InvalidRequest: Wrong method or content type, missing parameters.
            InvalidClient: Unknown client or bad secret.
            UnsupportedGrantType: Unknown grant, or grant not allowed for the client.
            InvalidGrant: Bad, expired, reused or mismatched code/refresh token, bad user credentials.
            InvalidScope: Requested scope not allowed.
            ServerError: Store or signing failure.
        """
        return await self._run("token", self._token(request, options or TokenOptions()))

    async def _token(self, request: OAuthRequest, options: TokenOptions) -> TokenResult:
        if request.method != "POST":
            raise InvalidRequest("Invalid request: method must be POST")
        if not (request.is_form() or request.is_json()):
            raise InvalidRequest("Invalid request: content must be application/x-www-form-urlencoded")

        grant_type = request.body_param("grant_type")
        client = await self._authenticate_client(request, grant_type, options)

        if not grant_type:
            raise InvalidRequest("Missing parameter: `grant_type`")
        if grant_type not in self.options.grant_types:
            raise UnsupportedGrantType()
        if not client.allows_grant(grant_type):
            raise UnsupportedGrantType("Unsupported grant type: `grant_type` is not allowed for this client")

        result = await self._grant_handlers[grant_type](request, client, options)

        log.info(
            "Access token issued",
            details={
                "grant_type": grant_type,
                "client_id": client.id,
                "user_id": result.access.user_id,
                "expires_in": result.expires_in,
                "refresh": result.refresh_token is not None,
            },
        )
        return result

    async def _authenticate_client(self, request: OAuthRequest, grant_type: Optional[str], options: TokenOptions) -> Client:
        """Identify and authenticate the client making a token request."""
        basic_id, basic_secret = parse_basic_auth(request.header("authorization"))
        body_id = request.body_param("client_id")
        body_secret = request.body_param("client_secret")

        via_header = basic_id is not None
        if via_header:
            if body_secret:
                raise InvalidRequest("Invalid request: only one client authentication method is allowed")
            if body_id and body_id != basic_id:
                raise InvalidRequest("Invalid request: `client_id` does not match the authorization header")
            client_id, client_secret = basic_id, basic_secret
        else:
            client_id, client_secret = body_id, body_secret

        if not client_id:
            raise InvalidClient("Invalid client: cannot retrieve client credentials")

        client = await self.store.get_client(client_id)

        required = _pick(options.require_client_authentication, self.options.require_client_authentication)
        needs_secret = client is None or (not client.public and required.get(grant_type or "", True))

        if client is None or (needs_secret and not verify_client_secret(client_secret, client.secret)):
            log.warning("Client authentication failed", details={"client_id": client_id, "grant_type": grant_type})
            if via_header:
                raise InvalidClient(
                    "Invalid client: client is invalid",
                    code=401,
                    headers={"WWW-Authenticate": f'Basic realm="{OAUTH_REALM}"'},
                )
            raise InvalidClient("Invalid client: client is invalid")

        return client

    async def _authorization_code_grant(self, request: OAuthRequest, client: Client, options: TokenOptions) -> TokenResult:
        value = request.body_param("code")
        if not value:
            raise InvalidRequest("Missing parameter: `code`")

        code = await self.store.get_authorization_code(value)
        if code is None or code.client_id != client.id:
            raise InvalidGrant("Invalid grant: authorization code is invalid")
        if code.consumed:
            raise InvalidGrant("Invalid grant: authorization code has already been used")
        if code.is_expired(self._clock()):
            raise InvalidGrant("Invalid grant: authorization code has expired")

        redirect_uri = request.body_param("redirect_uri")
        if redirect_uri and redirect_uri != code.redirect_uri:
            raise InvalidGrant("Invalid grant: `redirect_uri` is invalid")

        access, refresh = self._build_tokens(client, code.user_id, code.scope, options, with_refresh=True)
        signed = self.codec.issue(access)

        if not await self.store.redeem_authorization_code(code.code, access, refresh):
            raise InvalidGrant("Invalid grant: authorization code has already been used")

        return self._result(signed, access, refresh)

    async def _refresh_token_grant(self, request: OAuthRequest, client: Client, options: TokenOptions) -> TokenResult:
        value = request.body_param("refresh_token")
        if not value:
            raise InvalidRequest("Missing parameter: `refresh_token`")

        stored = await self.store.get_refresh_token(value)
        if stored is None or stored.client_id != client.id:
            raise InvalidGrant("Invalid grant: refresh token is invalid")
        if stored.is_expired(self._clock()):
            raise InvalidGrant("Invalid grant: refresh token has expired")

        scope = stored.scope
        requested = request.body_param("scope")
        if requested:
            if not set(parse_scope(requested)) <= set(parse_scope(stored.scope)):
                raise InvalidScope("Invalid scope: `scope` exceeds the original grant")
            scope = requested

        rotate = _pick(options.always_issue_new_refresh_token, self.options.always_issue_new_refresh_token)
        access, refresh = self._build_tokens(client, stored.user_id, scope, options, with_refresh=rotate)
        signed = self.codec.issue(access)

        if rotate:
            if not await self.store.rotate_refresh_token(stored.token, access, refresh):
                raise InvalidGrant("Invalid grant: refresh token is invalid")
        else:
            await self.store.save_token(access)

        return self._result(signed, access, refresh)

    async def _client_credentials_grant(self, request: OAuthRequest, client: Client, options: TokenOptions) -> TokenResult:
        scope = request.body_param("scope") or None
        self._validate_scope(client, scope)

        access, _ = self._build_tokens(client, None, scope, options, with_refresh=False)
        signed = self.codec.issue(access)
        await self.store.save_token(access)
        return self._result(signed, access, None)

    async def _password_grant(self, request: OAuthRequest, client: Client, options: TokenOptions) -> TokenResult:
        username = request.body_param("username")
        password = request.body_param("password")
        if not username:
            raise InvalidRequest("Missing parameter: `username`")
        if not password:
            raise InvalidRequest("Missing parameter: `password`")

        user = await self.store.get_user_by_username(username)
        if user is None or not verify_password(password, user.password_hash):
            raise InvalidGrant("Invalid grant: user credentials are invalid")

        scope = request.body_param("scope") or None
        self._validate_scope(client, scope)

        access, refresh = self._build_tokens(client, user.id, scope, options, with_refresh=True)
        signed = self.codec.issue(access)
        await self.store.save_token(access, refresh)
        return self._result(signed, access, refresh)

    def _build_tokens(
        self,
        client: Client,
        user_id: Optional[str],
        scope: Optional[str],
        options: TokenOptions,
        with_refresh: bool,
    ) -> Tuple[AccessToken, Optional[RefreshToken]]:
        now = self._clock()
        access_lifetime = _pick(options.access_token_lifetime, self.options.access_token_lifetime)
        access = AccessToken(
            id=_new_token_value(),
            client_id=client.id,
            user_id=user_id,
            scope=scope,
            issued_at=now,
            expires_at=now + timedelta(seconds=access_lifetime),
        )
        refresh = None
        if with_refresh:
            refresh_lifetime = _pick(options.refresh_token_lifetime, self.options.refresh_token_lifetime)
            refresh = RefreshToken(
                token=_new_token_value(),
                client_id=client.id,
                user_id=user_id,
                scope=scope,
                issued_at=now,
                expires_at=now + timedelta(seconds=refresh_lifetime),
            )
        return access, refresh

    @staticmethod
    def _result(signed: str, access: AccessToken, refresh: Optional[RefreshToken]) -> TokenResult:
        return TokenResult(
            access_token=signed,
            expires_in=int((access.expires_at - access.issued_at).total_seconds()),
            refresh_token=refresh.token if refresh else None,
            scope=access.scope,
            access=access,
            refresh=refresh,
        )

    # ------------------------------------------------------------------
    # authenticate
    # ------------------------------------------------------------------

    async def authenticate(self, request: OAuthRequest, options: Optional[AuthenticateOptions] = None) -> Principal:
        """Resolve the principal behind a bearer token.

        The token signature and expiry are checked by the codec, then the opaque
        token id is looked up in the store so revoked tokens are rejected even
        while their signature is still valid.

        Args:
            request (OAuthRequest): Request carrying the bearer token.
            options (Optional[AuthenticateOptions]): Required scope and token sources.

        Returns:
            Principal: Token record, user (None for client credential tokens), claims.

        Raises:
            UnauthorizedRequest: No bearer token in the request.
            InvalidRequest: Token sent through more than one channel, or in the query
                string when that is not allowed.
            InvalidToken: Bad signature, unknown key, malformed, or revoked token.
            TokenExpired: Token lifetime has lapsed.
            InsufficientScope: Token lacks a required scope.
            ServerError: Store failure.
        """
        return await self._run("authenticate", self._authenticate(request, options or AuthenticateOptions()))

    async def _authenticate(self, request: OAuthRequest, options: AuthenticateOptions) -> Principal:
        token = self._get_bearer_token(request, options)
        claims = self.codec.decode(token)

        record = await self.store.get_access_token(str(claims["access_token"]))
        if record is None:
            raise InvalidToken("Invalid token: access token is invalid")
        if record.is_expired(self._clock()):
            raise TokenExpired()
        if str(claims.get("sub")) != str(record.user_id or record.client_id):
            raise InvalidToken("Invalid token: subject does not match")

        required = parse_scope(options.scope)
        if required and not set(required) <= set(parse_scope(record.scope)):
            raise InsufficientScope()

        user = await self.store.get_user(record.user_id) if record.user_id else None
        return Principal(token=record, user=user, claims=claims)

    def _get_bearer_token(self, request: OAuthRequest, options: AuthenticateOptions) -> str:
        header_token = None
        header = request.header("authorization") or ""
        scheme, _, value = header.strip().partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            header_token = value.strip()

        body_token = request.body_param("access_token") if request.method == "POST" and request.is_form() else None

        query_token = request.query.get("access_token")
        if query_token and not _pick(options.allow_bearer_tokens_in_query_string, self.options.allow_bearer_tokens_in_query_string):
            raise InvalidRequest("Invalid request: do not send bearer tokens in query URLs")

        found = [t for t in (header_token, body_token, query_token) if t]
        if len(found) > 1:
            raise InvalidRequest("Invalid request: only one authentication method is allowed")
        if not found:
            raise UnauthorizedRequest()
        return found[0]

    # ------------------------------------------------------------------

    async def _run(self, operation: str, coro):
        """Await an operation, converting unexpected failures to ServerError."""
        try:
            return await coro
        except OAuthError as e:
            log.debug(f"OAuth {operation} rejected", details={"error": e.name, "description": e.message})
            raise
        except Exception as e:
            log.error(f"OAuth {operation} failed: {e}")
            raise ServerError(f"Server error: {operation} failed") from e
