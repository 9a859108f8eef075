from typing import Dict, Optional

from fastapi import FastAPI
from fastapi.testclient import TestClient

from gateway.context import RequestContext
from gateway.routes import router

BACKEND_URL = "https://backend.test"
ACCESS_TOKEN = "access-token-123"
ID_TOKEN = "id-token-456"
CSRF_TOKEN = "csrf-token-789"


def build_test_app() -> FastAPI:
    test_app = FastAPI()
    test_app.include_router(router)
    return test_app


def session_cookies(
    access_token: Optional[str] = ACCESS_TOKEN,
    id_token: Optional[str] = ID_TOKEN,
    csrf_token: Optional[str] = CSRF_TOKEN,
    expires_at: Optional[int] = None,
) -> Dict[str, str]:
    cookies = {}
    if access_token:
        cookies["gw_access_token"] = access_token
    if id_token:
        cookies["gw_id_token"] = id_token
    if csrf_token:
        cookies["gw_csrf"] = csrf_token
    if expires_at is not None:
        cookies["gw_access_expires_at"] = str(expires_at)
    return cookies


def gateway_client(cookies: Optional[Dict[str, str]] = None) -> TestClient:
    return TestClient(build_test_app(), cookies=cookies or {})


def make_context(
    method: str = "GET",
    path: str = "/api/test",
    headers: Optional[Dict[str, str]] = None,
    cookies: Optional[Dict[str, str]] = None,
    query_string: str = "",
    app=None,
) -> RequestContext:
    cookies = cookies or {}
    headers = {k.lower(): v for k, v in (headers or {}).items()}
    if cookies and "cookie" not in headers:
        headers["cookie"] = "; ".join(f"{k}={v}" for k, v in cookies.items())
    return RequestContext(
        method=method.upper(),
        url=f"http://testserver{path}",
        base_url="http://testserver",
        path=path,
        query_string=query_string,
        headers=headers,
        cookies=cookies,
        app=app,
    )


def set_cookie_headers(response) -> list:
    """Set-Cookie values of an httpx response or a Starlette response."""
    headers = response.headers
    if hasattr(headers, "get_list"):
        return headers.get_list("set-cookie")
    return headers.getlist("set-cookie")


def cleared_cookie_names(response) -> set:
    """Names of cookies the response deletes (``Max-Age=0``)."""
    names = set()
    for header in set_cookie_headers(response):
        if "max-age=0" in header.lower():
            names.add(header.split("=", 1)[0].strip())
    return names
