"""Protocol-neutral OAuth request.

The grant engine never sees a framework request. Transport code builds an
:class:`OAuthRequest` (``OAuthRequest.from_starlette`` for FastAPI/Starlette)
and the engine reads parameters, headers and the signed-in principal from it.

Example:
    .. code-block:: python

        request = OAuthRequest(
            method="POST",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            body={"grant_type": "authorization_code", "code": "C", "client_id": "abc"},
        )
        request.param("grant_type")  # "authorization_code"
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator
from starlette.requests import Request as StarletteRequest

import structlog

from .exceptions import InvalidRequest
from .models import User

log = structlog.get_logger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"


class OAuthRequest(BaseModel):
    """Transport-independent view of an incoming request.

    Attributes:
        method (str): Upper-cased HTTP method.
        headers (Dict[str, str]): Request headers with lower-cased names.
        query (Dict[str, Any]): Query string parameters.
        body (Dict[str, Any]): Parsed form or JSON body.
        principal (Optional[User]): User already signed in to this server, if any.
    """

    method: str = Field("GET", description="HTTP method")
    headers: Dict[str, str] = Field(default_factory=dict, description="Request headers, lower-cased names")
    query: Dict[str, Any] = Field(default_factory=dict, description="Query string parameters")
    body: Dict[str, Any] = Field(default_factory=dict, description="Parsed request body")
    principal: Optional[User] = Field(None, description="Signed-in user")

    @field_validator("method", mode="before")
    @classmethod
    def validate_method(cls, value: str) -> str:
        return (value or "GET").upper()

    @field_validator("headers", mode="before")
    @classmethod
    def validate_headers(cls, value: Optional[Dict[str, str]]) -> Dict[str, str]:
        return {str(k).lower(): str(v) for k, v in (value or {}).items()}

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def content_type(self) -> str:
        return (self.header("content-type") or "").split(";", 1)[0].strip().lower()

    def is_form(self) -> bool:
        return self.content_type == FORM_CONTENT_TYPE

    def is_json(self) -> bool:
        return self.content_type == JSON_CONTENT_TYPE

    def param(self, name: str) -> Optional[str]:
        """Return a parameter from the body, falling back to the query string."""
        value = self.body.get(name)
        if value is None:
            value = self.query.get(name)
        if value is None:
            return None
        return str(value).strip()

    def body_param(self, name: str) -> Optional[str]:
        """Return a body field as a string.

        Raises:
            InvalidRequest: If the field is present but is not a string.
        """
        value = self.body.get(name)
        if value is None:
            return None
        if not isinstance(value, str):
            raise InvalidRequest(f"Invalid parameter: `{name}` must be a string")
        return value

    @classmethod
    async def from_starlette(cls, request: StarletteRequest, principal: Optional[User] = None) -> "OAuthRequest":
        """Build an OAuthRequest from a Starlette/FastAPI request.

        Args:
            request (StarletteRequest): Incoming framework request.
            principal (Optional[User]): Signed-in user resolved by the transport.

        Returns:
            OAuthRequest: Normalized request.

        Raises:
            InvalidRequest: If the body cannot be parsed.
        """
        headers = dict(request.headers)
        query = dict(request.query_params)
        body: Dict[str, Any] = {}

        content_type = (headers.get("content-type") or "").split(";", 1)[0].strip().lower()
        if request.method in ("POST", "PUT", "PATCH"):
            try:
                if content_type == FORM_CONTENT_TYPE:
                    form = await request.form()
                    body = {k: v for k, v in form.items() if isinstance(v, str)}
                elif content_type == JSON_CONTENT_TYPE:
                    raw = await request.body()
                    if raw:
                        parsed = await request.json()
                        if not isinstance(parsed, dict):
                            raise InvalidRequest("Invalid request: body must be a JSON object")
                        body = parsed
            except InvalidRequest:
                raise
            except Exception as e:
                log.warning(f"Unable to parse request body: {e}")
                raise InvalidRequest("Invalid request: malformed body") from e

        return cls(method=request.method, headers=headers, query=query, body=body, principal=principal)
