"""
Internal self-calls and composite "bootstrap" responses.

A bootstrap endpoint collapses several dashboard requests into one: it calls
sibling routes of this same application with the caller's cookies, waits for
all of them, and either merges their payloads or reports the first failure.
By default the calls run in-process through ``httpx.ASGITransport``; set
``INTERNAL_CALLS_IN_PROCESS=false`` to send them over the network instead.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx
from fastapi.responses import JSONResponse
from opentelemetry import trace

from gateway.backend.cache_control import most_restrictive_cache_control
from gateway.context import RequestContext
from gateway.utils.exception_logging import log_exception_with_details
from gateway.utils.traced_requests import traced_request
from gateway.vars import (
    INTERNAL_API_BASE_URL,
    INTERNAL_CALLS_IN_PROCESS,
    INTERNAL_FETCH_TIMEOUT_SECONDS,
    REQUEST_ID_HEADER,
)

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

UNAUTHORIZED_MESSAGE = "unauthorized"


@dataclass
class InternalFetchResult:
    ok: bool
    status: int
    data: Any = None
    request_id: Optional[str] = None
    server_timing: Optional[str] = None
    cache_control: Optional[str] = None
    set_cookies: List[str] = field(default_factory=list)
    timed_out: bool = False
    error: Optional[str] = None


def create_internal_client(ctx: RequestContext, timeout: float) -> httpx.AsyncClient:
    if INTERNAL_CALLS_IN_PROCESS and ctx.app is not None:
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=ctx.app, raise_app_exceptions=False),
            base_url=ctx.base_url,
            timeout=httpx.Timeout(timeout),
        )
    return httpx.AsyncClient(
        base_url=INTERNAL_API_BASE_URL or ctx.base_url,
        timeout=httpx.Timeout(timeout),
    )


def _read_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


async def fetch_internal_json(
    ctx: RequestContext,
    path: str,
    *,
    timeout: Optional[float] = None,
    cookie_header: Optional[str] = None,
) -> InternalFetchResult:
    """
    GET a sibling route with the caller's cookies and capture its result.

    Never raises for transport problems: a timeout yields status 504 with
    ``timed_out`` set, any other transport error yields 503.
    """
    effective_timeout = timeout if timeout and timeout > 0 else INTERNAL_FETCH_TIMEOUT_SECONDS
    headers = {}
    cookies = cookie_header if cookie_header is not None else ctx.cookie_header
    if cookies and cookies.strip():
        headers["cookie"] = cookies
    request_id = ctx.header(REQUEST_ID_HEADER)
    if request_id:
        headers[REQUEST_ID_HEADER] = request_id

    with traced_request(
        tracer,
        operation="fetch_internal_json",
        target=path,
        method="GET",
        start_message=f"[Bootstrap] {ctx.path} -> {path}",
        extra_attrs={"gateway.timeout_seconds": effective_timeout},
    ) as span:
        try:
            async with create_internal_client(ctx, effective_timeout) as client:
                # ASGITransport ignores httpx timeouts, so bound the call here as well
                response = await asyncio.wait_for(
                    client.get(path, headers=headers), timeout=effective_timeout
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            span.set_attribute("gateway.error", "timeout")
            log_exception_with_details(logger, "[Bootstrap]", e, target=path, level=logging.WARNING)
            return InternalFetchResult(ok=False, status=504, timed_out=True, error="timeout")
        except httpx.HTTPError as e:
            span.set_attribute("gateway.error", "network_error")
            log_exception_with_details(logger, "[Bootstrap]", e, target=path)
            return InternalFetchResult(ok=False, status=503, error="network_error")

        span.set_attribute("gateway.status_code", response.status_code)
        return InternalFetchResult(
            ok=200 <= response.status_code < 300,
            status=response.status_code,
            data=_read_json(response),
            request_id=response.headers.get(REQUEST_ID_HEADER),
            server_timing=response.headers.get("server-timing"),
            cache_control=response.headers.get("cache-control"),
            set_cookies=response.headers.get_list("set-cookie"),
        )


async def fetch_all(ctx: RequestContext, *paths: str, **kwargs) -> List[InternalFetchResult]:
    """Issue the internal calls concurrently and wait for every one of them."""
    return list(
        await asyncio.gather(*(fetch_internal_json(ctx, path, **kwargs) for path in paths))
    )


def first_failed_result(*results: InternalFetchResult) -> Optional[InternalFetchResult]:
    for result in results:
        if not 200 <= result.status < 300:
            return result
    return None


def summarize_failure(
    results: Sequence[InternalFetchResult], message: str
) -> Optional[Tuple[int, str]]:
    """
    Status and client-facing message for a failed composite, or None.

    The first failure in call order decides. A 401 keeps its status and
    becomes "unauthorized" so clients can send the user to sign in; anything
    else keeps its status but hides the constituent's error body behind
    ``message``.
    """
    failed = first_failed_result(*results)
    if failed is None:
        return None
    if failed.status == 401:
        return 401, UNAUTHORIZED_MESSAGE
    return failed.status, message


def _parse_set_cookie_pair(set_cookie: str) -> Optional[Tuple[str, str]]:
    pair = set_cookie.split(";", 1)[0].strip()
    name, sep, value = pair.partition("=")
    if not sep or not name.strip():
        return None
    return name.strip(), value.strip()


def merge_cookie_header(
    base_cookie_header: Optional[str], set_cookies: Optional[Iterable[str]]
) -> Optional[str]:
    """Apply cookies set by an earlier internal call to the Cookie header of a later one."""
    merged: Dict[str, str] = {}
    for part in (base_cookie_header or "").split(";"):
        parsed = _parse_set_cookie_pair(part)
        if parsed:
            merged[parsed[0]] = parsed[1]
    for set_cookie in set_cookies or []:
        parsed = _parse_set_cookie_pair(set_cookie)
        if parsed:
            merged[parsed[0]] = parsed[1]
    if not merged:
        return None
    return "; ".join(f"{name}={value}" for name, value in merged.items())


def apply_bootstrap_meta(response: JSONResponse, *results: InternalFetchResult) -> None:
    """
    Copy constituent metadata onto the composite response.

    Request id: the first one seen. Server-Timing: all entries joined.
    Set-Cookie: each distinct value once. Cache-Control: the most restrictive
    of the constituents.
    """
    request_id = next((r.request_id for r in results if r.request_id), None)
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id

    timings = [r.server_timing for r in results if r.server_timing]
    if timings:
        response.headers["Server-Timing"] = ", ".join(timings)

    seen = set()
    for result in results:
        for cookie in result.set_cookies:
            if cookie and cookie not in seen:
                response.headers.append("set-cookie", cookie)
                seen.add(cookie)

    response.headers["Cache-Control"] = most_restrictive_cache_control(
        r.cache_control for r in results
    )


def bootstrap_failure_response(
    results: Sequence[InternalFetchResult],
    message: str,
    required: Optional[Sequence[InternalFetchResult]] = None,
) -> Optional[JSONResponse]:
    """
    The summarised error response when a required constituent failed, else None.

    ``required`` defaults to every result. Metadata is copied from all of them.
    """
    checked = results if required is None else required
    summary = summarize_failure(checked, message)
    if summary is None:
        return None
    status, error = summary
    failed = first_failed_result(*checked)
    logger.info(
        f"[Bootstrap] Constituent failed with {failed.status}"
        f"{' (' + failed.error + ')' if failed.error else ''}; responding {status}"
    )
    response = JSONResponse(status_code=status, content={"error": error})
    apply_bootstrap_meta(response, *results)
    return response


def bootstrap_success_response(
    payload: Dict[str, Any], results: Sequence[InternalFetchResult]
) -> JSONResponse:
    response = JSONResponse(content=payload)
    apply_bootstrap_meta(response, *results)
    return response


def bootstrap_response(
    sections: Callable[[], Dict[str, Any]],
    *results: InternalFetchResult,
    failure_message: str,
    required: Optional[Sequence[InternalFetchResult]] = None,
) -> JSONResponse:
    """
    Build a composite response from finished internal calls.

    ``sections`` is only evaluated when every required call succeeded, so it
    may read their ``data`` without guarding against failures. Optional calls
    must be checked by ``sections`` itself.
    """
    failure = bootstrap_failure_response(results, failure_message, required)
    if failure is not None:
        return failure
    return bootstrap_success_response(sections(), results)
