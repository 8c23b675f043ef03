"""Bearer token encoding.

Access tokens are opaque identifiers stored by the :class:`~core_oauth.store.Store`.
What the client receives is a JWT wrapping that identifier::

    header:  {"alg": "HS256", "typ": "JWT", "kid": "HS256-2019-09-02"}
    payload: {"access_token": "<opaque id>", "sub": "42", "cid": "abc",
              "scope": "read", "iat": 1700000000, "exp": 1707776000}

The ``kid`` header names the signing key. The codec holds a keyring of every
key that may still verify tokens, so rotating the active key does not
invalidate tokens issued under the previous one.

A valid signature proves the token was issued here and has not expired. It
does not prove the token is still live in the store; the grant engine checks
that separately.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol

import jwt
import structlog

from .constants import JWT_ALGORITHM, JWT_ISSUER, JWT_KID, JWT_PREVIOUS_KEYS, JWT_SECRET_KEY, SUPPORTED_ALGORITHMS
from .exceptions import InvalidToken, ServerError, TokenExpired
from .models import AccessToken, utc_now

log = structlog.get_logger(__name__)


class TokenCodec(Protocol):
    """Port the grant engine uses to turn access-token records into bearer strings."""

    def issue(self, record: AccessToken) -> str: ...

    def decode(self, token: str) -> Dict[str, Any]: ...


class JwtTokenCodec:
    """HMAC-signed JWT codec with key-id based rotation.

    Args:
        keys (Dict[str, str]): Keyring of ``kid -> secret``. Must contain ``active_kid``.
        active_kid (str): Key id used to sign new tokens.
        algorithm (str): One of HS256, HS384, HS512.
        issuer (Optional[str]): Optional ``iss`` claim added to issued tokens.
        clock (Callable[[], datetime]): Source of the current time for expiry checks.

    Raises:
        ValueError: If the active key is missing from the keyring or the algorithm
            is not supported.
    """

    def __init__(
        self,
        keys: Dict[str, str],
        active_kid: str,
        algorithm: str = "HS256",
        issuer: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if active_kid not in keys:
            raise ValueError(f"Active key id '{active_kid}' is not in the keyring")
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported algorithm: {algorithm}")
        self._keys = dict(keys)
        self._active_kid = active_kid
        self._algorithm = algorithm
        self._issuer = issuer
        self._clock = clock

    @classmethod
    def from_settings(cls, clock: Callable[[], datetime] = utc_now) -> "JwtTokenCodec":
        """Build a codec from the ``OAUTH_JWT_*`` environment configuration."""
        keys = dict(JWT_PREVIOUS_KEYS)
        keys[JWT_KID] = JWT_SECRET_KEY
        return cls(keys, JWT_KID, algorithm=JWT_ALGORITHM, issuer=JWT_ISSUER, clock=clock)

    @property
    def active_kid(self) -> str:
        return self._active_kid

    def issue(self, record: AccessToken) -> str:
        """Sign an access-token record.

        Args:
            record (AccessToken): Stored access token to wrap.

        Returns:
            str: Compact JWS.

        Raises:
            ServerError: If signing fails.
        """
        payload: Dict[str, Any] = {
            "access_token": record.id,
            "sub": str(record.user_id) if record.user_id is not None else record.client_id,
            "cid": record.client_id,
            "iat": int(record.issued_at.timestamp()),
            "exp": record.expires_at.timestamp(),
        }
        if record.scope:
            payload["scope"] = record.scope
        if self._issuer:
            payload["iss"] = self._issuer

        try:
            return jwt.encode(
                payload,
                self._keys[self._active_kid],
                algorithm=self._algorithm,
                headers={"kid": self._active_kid},
            )
        except Exception as e:
            log.error(f"Failed to sign access token: {e}")
            raise ServerError("Server error: unable to sign access token") from e

    def decode(self, token: str) -> Dict[str, Any]:
        """Verify a bearer token and return its claims.

        Args:
            token (str): Compact JWS received from a client.

        Returns:
            Dict[str, Any]: Verified claims.

        Raises:
            InvalidToken: Malformed token, unknown key id, or bad signature.
            TokenExpired: The ``exp`` claim is at or before the current time.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise InvalidToken("Invalid token: malformed access token") from e

        kid = header.get("kid")
        secret = self._keys.get(kid) if kid else None
        if secret is None:
            log.debug("Rejected token with unknown key id", details={"kid": kid})
            raise InvalidToken("Invalid token: unknown signing key")

        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={
                    "verify_signature": True,
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["exp", "sub", "access_token"],
                },
            )
        except jwt.InvalidTokenError as e:
            raise InvalidToken(f"Invalid token: {e}") from e

        # exp keeps sub-second precision so it agrees with the stored record
        if self._clock().timestamp() >= float(claims["exp"]):
            raise TokenExpired()

        return claims
