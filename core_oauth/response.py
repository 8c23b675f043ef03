"""Protocol-neutral OAuth response and its mapping to a transport reply.

The middleware produces an :class:`OAuthResponse`; :func:`to_starlette_response`
turns it into the FastAPI/Starlette response that is actually sent.

Rules:
- 302 -> the ``Location`` header is extracted and removed from the generic
  header set, then a redirect is issued carrying the remaining headers.
- body is None -> empty body with the given status and headers.
- otherwise -> JSON body with the given status and headers.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator
from starlette.responses import JSONResponse, RedirectResponse, Response

import structlog

from .exceptions import ServerError

log = structlog.get_logger(__name__)

FOUND = 302


class OAuthResponse(BaseModel):
    """Status, headers and optional JSON body produced by the OAuth middleware.

    Header names are stored lower-cased.
    """

    status: int = Field(200, description="HTTP status code")
    headers: Dict[str, str] = Field(default_factory=dict, description="Response headers, lower-cased names")
    body: Optional[Dict[str, Any]] = Field(None, description="JSON body; None for an empty body")

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v):
        if not isinstance(v, int) or v < 100 or v > 599:
            raise ValueError(f"Invalid HTTP status code: {v}. Must be between 100-599")
        return v

    @field_validator("headers", mode="before")
    @classmethod
    def validate_headers(cls, value: Optional[Dict[str, str]]) -> Dict[str, str]:
        return {str(k).lower(): str(v) for k, v in (value or {}).items()}

    def set_header(self, name: str, value: str) -> "OAuthResponse":
        self.headers[name.lower()] = str(value)
        return self

    def get_header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @classmethod
    def from_body(cls, body: Dict[str, Any], status: int = 200, headers: Optional[Dict[str, str]] = None) -> "OAuthResponse":
        return cls(status=status, headers=headers or {}, body=body)

    @classmethod
    def empty(cls, status: int, headers: Optional[Dict[str, str]] = None) -> "OAuthResponse":
        return cls(status=status, headers=headers or {}, body=None)

    @classmethod
    def redirect(cls, url: str, headers: Optional[Dict[str, str]] = None) -> "OAuthResponse":
        response = cls(status=FOUND, headers=headers or {})
        return response.set_header("location", url)


def to_starlette_response(response: OAuthResponse) -> Response:
    """Convert an OAuthResponse into a Starlette response.

    Args:
        response (OAuthResponse): Protocol response from the middleware.

    Returns:
        Response: ``RedirectResponse`` for 302, ``JSONResponse`` when there is a
        body, plain empty ``Response`` otherwise.

    Raises:
        ServerError: If a 302 response carries no ``Location`` header.
    """
    headers = dict(response.headers)

    if response.status == FOUND:
        location = headers.pop("location", None)
        if not location:
            raise ServerError("Server error: redirect without location")
        log.debug(f"Creating RedirectResponse to: {location}")
        return RedirectResponse(url=location, status_code=FOUND, headers=headers)

    if response.body is None:
        # Content-Type would otherwise advertise JSON on an empty body
        headers.pop("content-type", None)
        return Response(status_code=response.status, headers=headers)

    headers.pop("content-type", None)
    return JSONResponse(content=response.body, status_code=response.status, headers=headers)
