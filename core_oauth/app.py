"""FastAPI application factory.

Builds an app serving the OAuth endpoints from configuration. The grant engine,
codec and store are constructed here and injected; nothing is held at module
level, so every call returns an independent application.

Example:
    Basic usage::

        from core_oauth.app import get_app

        app = get_app()

    Or with an ASGI server::

        uvicorn core_oauth.app:get_app --factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI

import structlog

from .codec import JwtTokenCodec, TokenCodec
from .logging_config import configure_logging
from .middleware import MiddlewareMode, OAuthMiddleware, SessionResolver
from .router import create_oauth_router
from .server import OAuth2Server, ServerOptions
from .store import InMemoryStore, Store

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("OAuth application started")
    yield
    log.info("OAuth application shutdown")


def get_app(
    store: Optional[Store] = None,
    codec: Optional[TokenCodec] = None,
    options: Optional[ServerOptions] = None,
    session_resolver: Optional[SessionResolver] = None,
    mode: MiddlewareMode = MiddlewareMode.RESPOND,
    use_error_handler: bool = False,
) -> FastAPI:
    """Create the OAuth FastAPI application.

    Args:
        store (Optional[Store]): Persistence backend. Defaults to an empty InMemoryStore.
        codec (Optional[TokenCodec]): Token codec. Defaults to ``JwtTokenCodec.from_settings()``.
        options (Optional[ServerOptions]): Grant engine defaults.
        session_resolver (Optional[SessionResolver]): Resolves the signed-in user
            for ``/oauth/authorize``. Defaults to ``request.state.user``.
        mode (MiddlewareMode): Middleware mode.
        use_error_handler (bool): Delegate OAuth errors to the app exception handler.

    Returns:
        FastAPI: Configured application. The middleware is available as
        ``app.state.oauth`` and the store as ``app.state.store``.
    """
    load_dotenv(find_dotenv(), override=False)
    configure_logging()

    store = store if store is not None else InMemoryStore()
    codec = codec if codec is not None else JwtTokenCodec.from_settings()

    server = OAuth2Server(store=store, codec=codec, options=options)
    oauth = OAuthMiddleware(server, mode=mode, use_error_handler=use_error_handler, session_resolver=session_resolver)

    app = FastAPI(
        title="Core OAuth",
        description="OAuth 2.0 authorization server",
        version="1.0.0",
        lifespan=lifespan,
    )
    oauth.install(app)
    app.include_router(create_oauth_router(oauth))

    app.state.oauth = oauth
    app.state.store = store

    log.debug("OAuth application configured", details={"mode": mode.value, "kid": getattr(codec, "active_kid", None)})
    return app
