import os
from typing import Dict


def _int_env(name: str, default: int, minimum: int = 1) -> int:
    try:
        value = int(os.getenv(name, str(default)))
        if value < minimum:
            return default
        return value
    except (ValueError, TypeError):
        return default


def _parse_keyring(value: str) -> Dict[str, str]:
    """Parse ``kid:secret,kid:secret`` into a keyring dict, ignoring malformed entries."""
    keys: Dict[str, str] = {}
    for item in (value or "").split(","):
        kid, sep, secret = item.strip().partition(":")
        if sep and kid and secret:
            keys[kid] = secret
    return keys


# JWT Configuration
JWT_SECRET_KEY = os.getenv("OAUTH_JWT_SECRET", "your-secret-key-here")
JWT_KID = os.getenv("OAUTH_JWT_KID", "HS256-2019-09-02")
JWT_ALGORITHM = os.getenv("OAUTH_JWT_ALGORITHM", "HS256")
# Validate algorithm is supported
SUPPORTED_ALGORITHMS = ["HS256", "HS384", "HS512"]
if JWT_ALGORITHM not in SUPPORTED_ALGORITHMS:
    JWT_ALGORITHM = "HS256"

# Keys that were active before the current one; tokens they signed stay valid.
JWT_PREVIOUS_KEYS = _parse_keyring(os.getenv("OAUTH_JWT_PREVIOUS_KEYS", ""))
JWT_ISSUER = os.getenv("OAUTH_JWT_ISSUER", "") or None

# Lifetimes in seconds
ACCESS_TOKEN_LIFETIME = _int_env("OAUTH_ACCESS_TOKEN_LIFETIME", 60 * 60 * 24 * 90)  # 90 days
REFRESH_TOKEN_LIFETIME = _int_env("OAUTH_REFRESH_TOKEN_LIFETIME", 60 * 60 * 24 * 365)  # 1 year
AUTHORIZATION_CODE_LIFETIME = _int_env("OAUTH_AUTHORIZATION_CODE_LIFETIME", 300)  # 5 minutes

OAUTH_REALM = os.getenv("OAUTH_REALM", "service")

BEARER_TOKEN_TYPE = "Bearer"

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"
GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_PASSWORD = "password"

SUPPORTED_GRANT_TYPES = (
    GRANT_AUTHORIZATION_CODE,
    GRANT_REFRESH_TOKEN,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_PASSWORD,
)

LOG_FORMAT = os.getenv("OAUTH_LOG_FORMAT", "console").lower()
LOG_LEVEL = os.getenv("OAUTH_LOG_LEVEL", "INFO").upper()
