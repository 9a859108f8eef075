"""
Read-only access to the session credential cookies.

The cookies are written by the sign-in flow, which lives outside this service.
The gateway reads them to authorise upstream calls and clears them on sign-out
or when the backend rejects the credential.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import jwt
from fastapi import Response

from gateway.context import RequestContext
from gateway.vars import (
    ACCESS_COOKIE_NAME,
    DEFAULT_REDIRECT_PATH,
    EXPIRES_AT_COOKIE_NAME,
    ID_COOKIE_NAME,
    REFRESH_COOKIE_NAME,
    SESSION_EXPIRY_SKEW_SECONDS,
)

logger = logging.getLogger("uvicorn.error")


class TokenType(str, Enum):
    ACCESS = "access"
    ID = "id"


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    # epoch milliseconds, 0 when unknown
    expires_at: int = 0

    def credential(self, token_type: TokenType) -> Optional[str]:
        if token_type == TokenType.ID:
            return self.id_token or None
        return self.access_token or None


def _parse_expires_at(raw: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def read_auth_session(ctx: RequestContext) -> Optional[AuthSession]:
    access_token = ctx.cookie(ACCESS_COOKIE_NAME)
    if not access_token:
        return None
    return AuthSession(
        access_token=access_token,
        id_token=ctx.cookie(ID_COOKIE_NAME) or None,
        refresh_token=ctx.cookie(REFRESH_COOKIE_NAME) or None,
        expires_at=_parse_expires_at(ctx.cookie(EXPIRES_AT_COOKIE_NAME)),
    )


def _jwt_expiry_ms(token: str) -> int:
    try:
        payload = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
            algorithms=["HS256", "RS256"],
        )
    except jwt.PyJWTError:
        logger.debug("[Session] Access token is not a decodable JWT; expiry unknown")
        return 0
    exp = payload.get("exp")
    return int(exp * 1000) if isinstance(exp, (int, float)) else 0


def session_expired(session: AuthSession, now: Optional[float] = None) -> bool:
    """
    True when the access token is known to expire within the skew window.

    The expires-at cookie wins; otherwise the unverified ``exp`` claim of a JWT
    access token is used. Opaque tokens without either are treated as valid and
    left for the backend to judge.
    """
    now_ms = int((time.time() if now is None else now) * 1000)
    expires_at = session.expires_at or _jwt_expiry_ms(session.access_token)
    if expires_at <= 0:
        return False
    return expires_at <= now_ms + SESSION_EXPIRY_SKEW_SECONDS * 1000


def clear_auth_cookies(response: Response) -> None:
    for name in (
        ACCESS_COOKIE_NAME,
        REFRESH_COOKIE_NAME,
        ID_COOKIE_NAME,
        EXPIRES_AT_COOKIE_NAME,
    ):
        response.delete_cookie(name, path="/")


def _has_control_characters(value: str) -> bool:
    return any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value)


def safe_redirect_path(value: Optional[str]) -> str:
    """
    Only same-site absolute paths are accepted as redirect targets.

    Browsers drop tab, CR and LF while parsing URLs, so values holding any
    control character are refused.
    """
    if not value:
        return DEFAULT_REDIRECT_PATH
    value = value.strip()
    if _has_control_characters(value) or "\\" in value:
        return DEFAULT_REDIRECT_PATH
    if value.startswith("/") and not value.startswith("//"):
        return value
    return DEFAULT_REDIRECT_PATH
