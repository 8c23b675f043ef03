"""OAuth 2.0 error taxonomy.

Every protocol failure raised by the grant engine, the token codec, or the
adapters is an :class:`OAuthError`. The middleware error boundary maps each
kind to an HTTP status and a ``{"error", "error_description"}`` body
(RFC 6749 Section 5.2), except :class:`UnauthorizedRequest` and its
subclasses, which produce a bearer challenge with an empty body.

Example:
    .. code-block:: python

        try:
            result = await server.token(request)
        except InvalidGrant as e:
            print(e.code, e.name, e.message)  # 400 invalid_grant code has expired
"""

from typing import Dict, Optional


class OAuthError(Exception):
    """Base class for OAuth protocol failures.

    Attributes:
        code (int): HTTP status code returned to the caller.
        name (str): RFC 6749 error code (``invalid_request``, ``invalid_grant``, ...).
        message (str): Human readable ``error_description``.
        headers (Dict[str, str]): Extra response headers (e.g. ``WWW-Authenticate``).
    """

    code: int = 500
    name: str = "server_error"
    default_message: str = "Server error"

    def __init__(self, message: Optional[str] = None, code: Optional[int] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.headers: Dict[str, str] = dict(headers or {})
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.name, "error_description": self.message}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code}, name={self.name!r}, message={self.message!r})"


class InvalidRequest(OAuthError):
    """Missing or malformed request parameters."""

    code = 400
    name = "invalid_request"
    default_message = "Invalid request"


class InvalidClient(OAuthError):
    """Unknown client or failed client authentication."""

    code = 400
    name = "invalid_client"
    default_message = "Invalid client: client is invalid"


class InvalidGrant(OAuthError):
    """Invalid, expired, or reused authorization code, refresh token, or user credentials."""

    code = 400
    name = "invalid_grant"
    default_message = "Invalid grant"


class InvalidScope(OAuthError):
    code = 400
    name = "invalid_scope"
    default_message = "Invalid scope: requested scope is invalid"


class UnauthorizedClient(OAuthError):
    """The client is not allowed to use this authorization flow."""

    code = 400
    name = "unauthorized_client"
    default_message = "Unauthorized client"


class UnsupportedGrantType(OAuthError):
    """Grant type unknown to the server or disabled for this client."""

    code = 400
    name = "unsupported_grant_type"
    default_message = "Unsupported grant type: grant_type is invalid"


class UnsupportedResponseType(OAuthError):
    code = 400
    name = "unsupported_response_type"
    default_message = "Unsupported response type: response_type is not supported"


class UnauthorizedRequest(OAuthError):
    """No usable credentials: missing bearer token or no signed-in principal."""

    code = 401
    name = "unauthorized_request"
    default_message = "Unauthorized request: no authentication given"


class InvalidToken(UnauthorizedRequest):
    """Bearer token is malformed, signed with an unknown key, or revoked."""

    name = "invalid_token"
    default_message = "Invalid token: access token is invalid"


class TokenExpired(InvalidToken):
    default_message = "Invalid token: access token has expired"


class InsufficientScope(OAuthError):
    code = 403
    name = "insufficient_scope"
    default_message = "Insufficient scope: authorized scope is insufficient"


class ServerError(OAuthError):
    """Store or signing failure."""

    code = 503
    name = "server_error"
    default_message = "Server error"
