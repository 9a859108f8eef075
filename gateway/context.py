"""
Per-request context and request-body parsing.

Route handlers receive a ``RequestContext`` through the ``get_request_context``
dependency and pass it explicitly to the CSRF guard, the backend forwarder and
the internal bootstrap aggregator. Nothing in the gateway reads cookies or
headers from ambient state.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union
from urllib.parse import quote, urlsplit

from fastapi import Request

logger = logging.getLogger("uvicorn.error")

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True)
class RequestContext:
    method: str
    url: str
    base_url: str
    path: str
    query_string: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    app: Any = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            method=request.method.upper(),
            url=str(request.url),
            base_url=str(request.base_url).rstrip("/"),
            path=request.url.path,
            query_string=request.url.query or "",
            headers={k.lower(): v for k, v in request.headers.items()},
            cookies=dict(request.cookies),
            app=request.scope.get("app"),
        )

    @property
    def is_mutating(self) -> bool:
        return self.method in MUTATING_METHODS

    @property
    def origin(self) -> str:
        """Scheme and host of the incoming request, e.g. ``https://app.example.com``."""
        parts = urlsplit(self.base_url)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def cookie_header(self) -> Optional[str]:
        raw = self.headers.get("cookie", "")
        return raw if raw.strip() else None

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def cookie(self, name: str) -> str:
        return self.cookies.get(name, "") or ""

    def query_suffix(self) -> str:
        """The incoming query string re-serialised as ``?a=b``, or empty."""
        return f"?{self.query_string}" if self.query_string else ""


async def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency building the explicit per-request context."""
    return RequestContext.from_request(request)


def encode_segment(value: str) -> str:
    """Percent-encode a user supplied path segment, including ``/``."""
    return quote(str(value), safe="")


@dataclass(frozen=True)
class ValidBody:
    value: Any


@dataclass(frozen=True)
class EmptyBody:
    pass


@dataclass(frozen=True)
class MalformedBody:
    raw: bytes
    reason: str


ParsedBody = Union[ValidBody, EmptyBody, MalformedBody]


def parse_json_body(raw: bytes) -> ParsedBody:
    if not raw or not raw.strip():
        return EmptyBody()
    try:
        return ValidBody(json.loads(raw))
    except (ValueError, UnicodeDecodeError) as e:
        return MalformedBody(raw=raw, reason=str(e))


async def read_json_body(request: Request) -> ParsedBody:
    return parse_json_body(await request.body())


def body_or_empty_object(parsed: ParsedBody) -> Any:
    """Lenient policy: anything but a valid non-null JSON document becomes ``{}``."""
    if isinstance(parsed, ValidBody) and parsed.value is not None:
        return parsed.value
    if isinstance(parsed, MalformedBody):
        logger.debug(f"[Body] Malformed JSON body treated as empty object: {parsed.reason}")
    return {}
