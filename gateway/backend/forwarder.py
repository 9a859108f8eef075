import json
import logging
import math
import re
import time
from typing import Any, Dict, Optional, Union

import httpx
from fastapi import Response
from fastapi.responses import JSONResponse
from opentelemetry import trace
from prometheus_client import Histogram

from gateway.auth.session import (
    TokenType,
    clear_auth_cookies,
    read_auth_session,
    session_expired,
)
from gateway.context import RequestContext
from gateway.utils import token_fingerprint
from gateway.utils.exception_logging import (
    describe_upstream_error,
    log_exception_with_details,
)
from gateway.utils.traced_requests import traced_request
from gateway.vars import BACKEND_API_URL, BACKEND_TIMEOUT_SECONDS, REQUEST_ID_HEADER

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

BACKEND_REQUEST_SECONDS = Histogram(
    "gateway_backend_request_duration_seconds",
    "Latency of calls from the gateway to the backend API",
    ["label", "outcome"],
)

_UNSET = object()


def build_server_timing_header(
    metric: str, duration_ms: float, description: Optional[str] = None
) -> str:
    """Format one Server-Timing entry, e.g. ``backend_proxy;dur=12.3;desc="/v1/me"``."""
    safe_metric = re.sub(r"[^a-zA-Z0-9_-]", "_", metric or "")[:64] or "backend"
    duration = max(0.0, duration_ms) if math.isfinite(duration_ms) else 0.0
    if not description:
        return f"{safe_metric};dur={duration:.1f}"
    safe_description = description.replace('"', "")[:80]
    return f'{safe_metric};dur={duration:.1f};desc="{safe_description}"'


def create_backend_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(BACKEND_TIMEOUT_SECONDS),
        follow_redirects=False,
    )


def unauthorized_response() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "unauthorized"})


def read_upstream_json(response: httpx.Response) -> Any:
    """
    Parsed JSON body of an upstream response, or None.

    None covers 204, empty bodies, non-JSON content types and bodies that fail
    to parse; callers treat all of those as an absent payload.
    """
    if response.status_code == 204 or not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" not in content_type:
        return None
    try:
        return response.json()
    except ValueError:
        logger.warning(
            f"[Proxy] Upstream sent unparseable JSON ({len(response.content)} bytes)"
        )
        return None


def _relay_upstream_response(upstream: httpx.Response) -> Response:
    status = upstream.status_code
    content_type = upstream.headers.get("content-type", "")
    if status == 204:
        relayed: Response = Response(status_code=204)
    elif upstream.content and content_type and "json" not in content_type:
        relayed = Response(
            content=upstream.content, status_code=status, media_type=content_type
        )
    else:
        payload = read_upstream_json(upstream)
        relayed = JSONResponse(
            status_code=status, content=payload if payload is not None else {}
        )

    relayed.headers["Cache-Control"] = upstream.headers.get("cache-control", "no-store")
    request_id = upstream.headers.get(REQUEST_ID_HEADER)
    if request_id:
        relayed.headers[REQUEST_ID_HEADER] = request_id
    return relayed


def _failure_response(exception: Exception) -> JSONResponse:
    if isinstance(exception, httpx.TimeoutException):
        return JSONResponse(status_code=504, content={"error": "upstream_timeout"})
    return JSONResponse(status_code=502, content={"error": "bad_gateway"})


def _encode_body(
    body: Optional[Union[bytes, str]], json_body: Any, headers: Dict[str, str]
) -> Optional[bytes]:
    if json_body is not _UNSET:
        headers.setdefault("content-type", "application/json")
        return json.dumps(json_body).encode("utf-8")
    if isinstance(body, str):
        return body.encode("utf-8")
    return body


async def _send(
    ctx: RequestContext,
    path: str,
    *,
    method: str,
    headers: Optional[Dict[str, str]],
    body: Optional[Union[bytes, str]],
    json_body: Any,
    bearer: Optional[str],
    timing_label: str,
    operation: str,
) -> Response:
    started = time.perf_counter()
    if not BACKEND_API_URL:
        logger.error("[Proxy] BACKEND_API_URL is not configured")
        return JSONResponse(status_code=503, content={"error": "backend_unavailable"})

    target_url = f"{BACKEND_API_URL}{path}"
    outbound = {k.lower(): v for k, v in (headers or {}).items()}
    content = _encode_body(body, json_body, outbound)
    if bearer:
        outbound["authorization"] = f"Bearer {bearer}"
    incoming_request_id = ctx.header(REQUEST_ID_HEADER)
    if incoming_request_id:
        outbound.setdefault(REQUEST_ID_HEADER, incoming_request_id)

    with traced_request(
        tracer,
        operation=operation,
        target=path,
        method=method,
        start_message=f"[Proxy] {method} {ctx.path} -> {path}",
        extra_attrs={"gateway.timing_label": timing_label},
    ) as span:
        try:
            async with create_backend_client() as client:
                upstream = await client.request(
                    method, target_url, headers=outbound, content=content
                )
        except httpx.HTTPError as e:
            outcome = describe_upstream_error(e)
            span.set_attribute("gateway.error", outcome)
            log_exception_with_details(logger, "[Proxy]", e, target=path)
            BACKEND_REQUEST_SECONDS.labels(timing_label, outcome).observe(
                time.perf_counter() - started
            )
            return _failure_response(e)

        span.set_attribute("gateway.status_code", upstream.status_code)
        relayed = _relay_upstream_response(upstream)

    elapsed = time.perf_counter() - started
    BACKEND_REQUEST_SECONDS.labels(timing_label, str(upstream.status_code)).observe(elapsed)
    relayed.headers["Server-Timing"] = build_server_timing_header(
        timing_label, elapsed * 1000, path
    )
    logger.debug(f"[Proxy] {method} {path} -> {upstream.status_code} in {elapsed * 1000:.1f}ms")
    return relayed


async def proxy_backend_request(
    ctx: RequestContext,
    path: str,
    *,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    body: Optional[Union[bytes, str]] = None,
    json_body: Any = _UNSET,
    token_type: TokenType = TokenType.ACCESS,
    timing_label: str = "backend_proxy",
) -> Response:
    """
    Forward a request to the backend API with the caller's session credential.

    ``path`` must already have its user-controlled segments percent-encoded.
    The selected credential is sent as a bearer token; when it is missing or
    the session has expired the call fails fast with 401 and the backend is
    never contacted. Upstream set-cookie headers are dropped, and an upstream
    401 clears the session cookies on the relayed response.
    """
    session = read_auth_session(ctx)
    if session is None:
        logger.info(f"[Proxy] No session for {method} {ctx.path}")
        return unauthorized_response()
    if session_expired(session):
        # cookies stay so the sign-in flow can still refresh them
        logger.info(f"[Proxy] Session expired for {method} {ctx.path}")
        return unauthorized_response()

    credential = session.credential(token_type)
    if not credential:
        logger.info(f"[Proxy] Missing {token_type.value} token for {method} {ctx.path}")
        return unauthorized_response()

    response = await _send(
        ctx,
        path,
        method=method,
        headers=headers,
        body=body,
        json_body=json_body,
        bearer=credential,
        timing_label=timing_label,
        operation="proxy_backend_request",
    )
    if response.status_code == 401:
        logger.info(
            f"[Proxy] Backend rejected credential {token_fingerprint(credential)}; "
            "clearing session cookies"
        )
        clear_auth_cookies(response)
    return response


async def public_backend_request(
    ctx: RequestContext,
    path: str,
    *,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    body: Optional[Union[bytes, str]] = None,
    json_body: Any = _UNSET,
    timing_label: str = "backend_public_proxy",
) -> Response:
    """Forward a request to an unauthenticated backend endpoint such as a shared link."""
    return await _send(
        ctx,
        path,
        method=method,
        headers=headers,
        body=body,
        json_body=json_body,
        bearer=None,
        timing_label=timing_label,
        operation="public_backend_request",
    )
