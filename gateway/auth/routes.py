import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Response
from fastapi.responses import RedirectResponse

from gateway.auth.csrf import (
    clear_csrf_cookie,
    csrf_redirect_response,
    ensure_csrf_cookie,
    validate_csrf,
)
from gateway.auth.session import clear_auth_cookies, safe_redirect_path
from gateway.context import RequestContext, get_request_context
from gateway.models import CsrfTokenResponse
from gateway.vars import SIGNIN_PATH

router = APIRouter(prefix="/api")
logger = logging.getLogger("uvicorn.error")


@router.get("/csrf", response_model=CsrfTokenResponse)
async def issue_csrf_token(
    response: Response, ctx: RequestContext = Depends(get_request_context)
):
    token = ensure_csrf_cookie(ctx, response)
    response.headers["Cache-Control"] = "no-store"
    return CsrfTokenResponse(csrf_token=token)


@router.post("/auth/signout")
async def sign_out(
    ctx: RequestContext = Depends(get_request_context),
    csrf_token: Optional[str] = Form(None),
    next_path: Optional[str] = Form(None, alias="next"),
):
    """
    Clear the session and CSRF cookies and send the browser to the sign-in page.

    Always answers with a 303. When the CSRF check fails nothing is cleared and
    the sign-in page receives an ``error`` message instead of ``signed_out=1``.
    """
    failure = validate_csrf(ctx, csrf_token)
    if failure:
        logger.warning(f"[Signout] Rejected: {failure.value}")
        return csrf_redirect_response(ctx, failure, SIGNIN_PATH)

    params = {"signed_out": "1"}
    if next_path and safe_redirect_path(next_path) == next_path.strip():
        params["next"] = next_path.strip()

    response = RedirectResponse(
        url=f"{ctx.origin}{SIGNIN_PATH}?{urlencode(params)}", status_code=303
    )
    clear_auth_cookies(response)
    clear_csrf_cookie(response)
    logger.info("[Signout] Session cleared")
    return response
