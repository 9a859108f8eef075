"""
CSRF protection for state-changing requests.

A random token lives in a cookie that client script can read. Every POST,
PUT, PATCH or DELETE must echo it, either in the ``csrf_token`` form field or
in the ``x-csrf-token`` header, and the echoed value must match the cookie
exactly. Validation never rotates the token.
"""

import hmac
import logging
import secrets
from enum import Enum
from typing import Optional
from urllib.parse import urlencode

from fastapi import Response
from fastapi.responses import JSONResponse, RedirectResponse

from gateway.context import RequestContext
from gateway.utils import token_fingerprint
from gateway.vars import (
    CSRF_COOKIE_NAME,
    CSRF_HEADER_NAME,
    CSRF_MAX_AGE_SECONDS,
    CSRF_ORIGIN_ALLOWLIST,
    CSRF_REQUIRE_ORIGIN,
    IS_PROD,
)

logger = logging.getLogger("uvicorn.error")


class CsrfFailure(str, Enum):
    ORIGIN_MISSING = "origin_missing"
    ORIGIN_INVALID = "origin_invalid"
    COOKIE_MISSING = "cookie_missing"
    TOKEN_MISSING = "token_missing"
    TOKEN_MISMATCH = "token_mismatch"

    @property
    def session_expired(self) -> bool:
        return self is CsrfFailure.COOKIE_MISSING

    @property
    def message(self) -> str:
        if self.session_expired:
            return "Your session has expired. Please sign in again."
        return "Security check failed. Refresh the page and try again."


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def read_csrf_token(ctx: RequestContext) -> str:
    return ctx.cookie(CSRF_COOKIE_NAME)


def set_csrf_cookie(response: Response, token: Optional[str] = None) -> str:
    value = token or generate_csrf_token()
    response.set_cookie(
        CSRF_COOKIE_NAME,
        value,
        max_age=CSRF_MAX_AGE_SECONDS,
        path="/",
        secure=IS_PROD,
        httponly=False,
        samesite="lax",
    )
    return value


def clear_csrf_cookie(response: Response) -> None:
    response.delete_cookie(CSRF_COOKIE_NAME, path="/")


def ensure_csrf_cookie(ctx: RequestContext, response: Response) -> str:
    """Return the cookie-held token, issuing and setting a new one only if absent."""
    existing = read_csrf_token(ctx)
    if existing:
        return existing
    logger.debug("[CSRF] Issued new token")
    return set_csrf_cookie(response)


def _check_origin(ctx: RequestContext) -> Optional[CsrfFailure]:
    origin = ctx.header("origin")
    if not origin:
        return CsrfFailure.ORIGIN_MISSING if CSRF_REQUIRE_ORIGIN else None
    if origin != ctx.origin and origin not in CSRF_ORIGIN_ALLOWLIST:
        return CsrfFailure.ORIGIN_INVALID
    return None


def validate_csrf(
    ctx: RequestContext, submitted_token: Optional[str] = None
) -> Optional[CsrfFailure]:
    """
    Validate a state-changing request against the cookie-held CSRF token.

    ``submitted_token`` is the value taken from a form body; when it is empty
    the ``x-csrf-token`` header is used instead. Safe methods always pass.

    Returns:
        The failure reason, or None when the request may proceed.
    """
    if not ctx.is_mutating:
        return None

    failure = _check_origin(ctx)
    if failure:
        logger.warning(f"[CSRF] {failure.value} for {ctx.method} {ctx.path}")
        return failure

    cookie_token = read_csrf_token(ctx)
    provided = submitted_token or ctx.header(CSRF_HEADER_NAME)

    if not cookie_token:
        failure = CsrfFailure.COOKIE_MISSING
    elif not provided:
        failure = CsrfFailure.TOKEN_MISSING
    elif not hmac.compare_digest(cookie_token.encode("utf-8"), provided.encode("utf-8")):
        failure = CsrfFailure.TOKEN_MISMATCH
        logger.debug(
            f"[CSRF] Token mismatch. cookie={token_fingerprint(cookie_token)} "
            f"submitted={token_fingerprint(provided)}"
        )

    if failure:
        logger.warning(f"[CSRF] {failure.value} for {ctx.method} {ctx.path}")
    return failure


def csrf_error_response(failure: CsrfFailure) -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={
            "error": "csrf_invalid",
            "failure": failure.value,
            "message": failure.message,
        },
        headers={"Cache-Control": "no-store"},
    )


def csrf_redirect_response(
    ctx: RequestContext, failure: CsrfFailure, target_path: str
) -> RedirectResponse:
    """303 back to a page with a human readable ``error`` query parameter."""
    query = urlencode({"error": failure.message})
    return RedirectResponse(url=f"{ctx.origin}{target_path}?{query}", status_code=303)
