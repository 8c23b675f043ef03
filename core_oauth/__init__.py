"""Core OAuth Package.

The core_oauth package is an OAuth 2.0 authorization server engine: it
validates clients, executes grant exchanges, issues signed bearer tokens and
authenticates inbound requests, with a FastAPI transport on top.

Modules:
    - **server.py**: Grant engine (authorize, token, authenticate)
    - **codec.py**: JWT-wrapped opaque bearer tokens with key rotation
    - **store.py**: Persistence interface and in-memory implementation
    - **request.py** / **response.py**: Protocol-neutral request/response and
      their Starlette mapping
    - **middleware.py**: Authentication, authorization and token guards
    - **router.py** / **app.py**: FastAPI routes and application factory
    - **application.py**: Owner-gated application and session views
    - **exceptions.py**: OAuth error taxonomy
    - **constants.py**: Environment configuration

Features:
    - **Grants**: authorization_code, refresh_token (with rotation),
      client_credentials, password
    - **Single-use codes**: atomic redemption through the store
    - **Key rotation**: ``kid`` header and a verification keyring
    - **Protocol-correct errors**: RFC 6749 error bodies, bearer and basic challenges

Usage Examples:

    .. code-block:: python

        from core_oauth.app import get_app

        app = get_app()

    .. code-block:: text

        GET  /oauth/authorize?response_type=code&client_id=abc&redirect_uri=https://x/cb&state=s
          -> 302 https://x/cb?code=...&state=s
        POST /oauth/token  grant_type=authorization_code&code=...&client_id=abc&client_secret=...
          -> {"access_token": "...", "token_type": "Bearer", "expires_in": 7776000, "refresh_token": "..."}
"""
