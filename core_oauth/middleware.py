"""Authentication, authorization and token guards for FastAPI/Starlette.

:class:`OAuthMiddleware` wraps an :class:`~core_oauth.server.OAuth2Server` and
exposes one guard per protocol operation. A guard adapts the framework request,
runs the engine, attaches the outcome to ``request.state.oauth`` and returns a
:class:`GuardResult` telling the caller whether the middleware owns the final
response.

Error boundary:

- :class:`~core_oauth.exceptions.UnauthorizedRequest` and its subclasses ->
  401, ``WWW-Authenticate: Bearer realm="service"``, empty body.
- any other :class:`~core_oauth.exceptions.OAuthError` -> its status and
  ``{"error", "error_description"}``.
- anything else -> :class:`~core_oauth.exceptions.ServerError`.

With ``use_error_handler=True`` the guards raise instead, and the framework
exception handler installed by :meth:`OAuthMiddleware.install` renders the
error the same way.

Example:
    .. code-block:: python

        oauth = OAuthMiddleware(server, mode=MiddlewareMode.RESPOND)
        oauth.install(app)

        @app.get("/me")
        async def me(principal: Principal = Depends(oauth.require_token("read"))):
            return {"id": principal.subject}
"""

import inspect
from enum import Enum
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from pydantic import BaseModel, ConfigDict
from starlette.responses import Response

import structlog

from .constants import OAUTH_REALM
from .exceptions import OAuthError, ServerError, UnauthorizedRequest
from .models import Principal, User
from .request import OAuthRequest
from .response import OAuthResponse, to_starlette_response
from .server import AuthenticateOptions, AuthorizeOptions, OAuth2Server, TokenOptions, build_redirect_uri

log = structlog.get_logger(__name__)

SessionResolver = Callable[[Request], Any]

NO_CACHE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


class MiddlewareMode(str, Enum):
    """Who writes the success response."""

    RESPOND = "respond"
    """The guard's response is sent as-is."""

    CONTINUE = "continue"
    """A downstream handler writes the response using ``request.state.oauth``."""


class GuardResult(BaseModel):
    """Outcome of a guard.

    Attributes:
        value: Engine result (Principal, AuthorizationCode or TokenResult) on success.
        response (Optional[OAuthResponse]): Response the middleware would send.
        error (Optional[OAuthError]): Failure, if any.
        respond (bool): True when ``response`` is final and must be sent.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: Any = None
    response: Optional[OAuthResponse] = None
    error: Optional[OAuthError] = None
    respond: bool = True

    def to_response(self) -> Response:
        return to_starlette_response(self.response or OAuthResponse.empty(204))


class OAuthMiddleware:
    """Guards binding the grant engine to a Starlette request cycle.

    Args:
        server (OAuth2Server): Grant engine.
        mode (MiddlewareMode): RESPOND or CONTINUE.
        use_error_handler (bool): Raise OAuthError from guards instead of
            building the error response.
        session_resolver (Optional[SessionResolver]): Returns the signed-in
            :class:`~core_oauth.models.User` for an authorize request. Defaults
            to ``request.state.user``.
        realm (str): Realm for ``WWW-Authenticate`` challenges.
    """

    def __init__(
        self,
        server: OAuth2Server,
        mode: MiddlewareMode = MiddlewareMode.RESPOND,
        use_error_handler: bool = False,
        session_resolver: Optional[SessionResolver] = None,
        realm: str = OAUTH_REALM,
    ):
        self.server = server
        self.mode = mode
        self.use_error_handler = use_error_handler
        self.session_resolver = session_resolver
        self.realm = realm

    async def authenticate(self, request: Request, options: Optional[AuthenticateOptions] = None) -> GuardResult:
        """Authenticate a resource request. Success always continues downstream."""
        try:
            oauth_request = await OAuthRequest.from_starlette(request)
            principal = await self.server.authenticate(oauth_request, options)
        except Exception as e:
            return self._fail(e)

        request.state.oauth = {"token": principal}
        return GuardResult(value=principal, respond=False)

    async def authorize(self, request: Request, options: Optional[AuthorizeOptions] = None) -> GuardResult:
        """Issue an authorization code and redirect back to the client."""
        try:
            user = await self._resolve_principal(request)
            oauth_request = await OAuthRequest.from_starlette(request, principal=user)
            code = await self.server.authorize(oauth_request, options)
        except Exception as e:
            return self._fail(e)

        request.state.oauth = {"code": code}
        response = OAuthResponse.redirect(build_redirect_uri(code, oauth_request.param("state")))
        return GuardResult(value=code, response=response, respond=self.mode is MiddlewareMode.RESPOND)

    async def token(self, request: Request, options: Optional[TokenOptions] = None) -> GuardResult:
        """Exchange a grant for a bearer token."""
        try:
            oauth_request = await OAuthRequest.from_starlette(request)
            result = await self.server.token(oauth_request, options)
        except Exception as e:
            return self._fail(e)

        request.state.oauth = {"token": result}
        response = OAuthResponse.from_body(result.to_body(), headers=NO_CACHE_HEADERS)
        return GuardResult(value=result, response=response, respond=self.mode is MiddlewareMode.RESPOND)

    def error_response(self, error: OAuthError) -> OAuthResponse:
        """Map an OAuthError to the response sent to the caller."""
        if isinstance(error, UnauthorizedRequest):
            headers = dict(error.headers)
            headers["WWW-Authenticate"] = f'Bearer realm="{self.realm}"'
            return OAuthResponse.empty(error.code, headers=headers)
        return OAuthResponse.from_body(error.to_dict(), status=error.code, headers=error.headers)

    def require_token(self, scope: Optional[str] = None) -> Callable:
        """Build a FastAPI dependency that authenticates the request.

        Failures are raised as OAuthError; :meth:`install` must have been
        called on the app so they are rendered.

        Args:
            scope (Optional[str]): Space-delimited scopes the token must carry.

        Returns:
            Callable: Dependency resolving to the request's Principal.
        """
        options = AuthenticateOptions(scope=scope)

        async def dependency(request: Request) -> Principal:
            result = await self.authenticate(request, options)
            if result.error is not None:
                raise result.error
            return result.value

        return dependency

    def install(self, app: FastAPI) -> None:
        """Register the OAuth error boundary as the app's OAuthError handler."""

        async def handle_oauth_error(request: Request, exc: OAuthError) -> Response:
            return to_starlette_response(self.error_response(exc))

        app.add_exception_handler(OAuthError, handle_oauth_error)

    async def _resolve_principal(self, request: Request) -> Optional[User]:
        if self.session_resolver is None:
            return getattr(request.state, "user", None)
        user = self.session_resolver(request)
        if inspect.isawaitable(user):
            user = await user
        return user

    def _fail(self, e: Exception) -> GuardResult:
        if isinstance(e, OAuthError):
            error = e
        else:
            log.error(f"Unexpected error in OAuth middleware: {e}")
            error = ServerError()

        if self.use_error_handler:
            raise error

        log.debug("OAuth request rejected", details={"error": error.name, "status": error.code})
        return GuardResult(error=error, response=self.error_response(error), respond=True)
