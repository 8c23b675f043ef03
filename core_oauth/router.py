from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Request, Response

import structlog

from .middleware import GuardResult, OAuthMiddleware

log = structlog.get_logger(__name__)

DownstreamHandler = Callable[[Request, GuardResult], Awaitable[Response]]


def create_oauth_router(
    oauth: OAuthMiddleware,
    authorize_handler: Optional[DownstreamHandler] = None,
    token_handler: Optional[DownstreamHandler] = None,
    prefix: str = "/oauth",
) -> APIRouter:
    """Build the ``/oauth/authorize`` and ``/oauth/token`` routes.

    In CONTINUE mode a successful guard hands the request to the matching
    downstream handler, which reads ``request.state.oauth`` and writes the
    response. Without a downstream handler the guard's own response is sent.

    Args:
        oauth (OAuthMiddleware): Guards bound to the grant engine.
        authorize_handler (Optional[DownstreamHandler]): Downstream handler for authorize.
        token_handler (Optional[DownstreamHandler]): Downstream handler for token.
        prefix (str): Route prefix.

    Returns:
        APIRouter: Router to include in the application.
    """

    async def _dispatch(request: Request, result: GuardResult, downstream: Optional[DownstreamHandler]) -> Response:
        if result.respond or downstream is None:
            return result.to_response()
        log.debug(f"Passing {request.url.path} to downstream handler")
        return await downstream(request, result)

    async def authorize(request: Request) -> Response:
        result = await oauth.authorize(request)
        return await _dispatch(request, result, authorize_handler)

    async def token(request: Request) -> Response:
        result = await oauth.token(request)
        return await _dispatch(request, result, token_handler)

    router = APIRouter(prefix=prefix)
    router.add_api_route("/authorize", authorize, methods=["GET", "POST"], response_class=Response)
    router.add_api_route("/token", token, methods=["POST"], response_class=Response)
    return router
