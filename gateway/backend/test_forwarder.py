import json
import time

import httpx
import pytest
import respx

from gateway.auth.session import TokenType
from gateway.backend.forwarder import (
    build_server_timing_header,
    proxy_backend_request,
    public_backend_request,
)
from gateway.utils_tests.gateway_client import (
    ACCESS_TOKEN,
    BACKEND_URL,
    ID_TOKEN,
    cleared_cookie_names,
    make_context,
    session_cookies,
)


def test_build_server_timing_header():
    assert build_server_timing_header("backend_proxy", 12.345, "/v1/me") == (
        'backend_proxy;dur=12.3;desc="/v1/me"'
    )
    assert build_server_timing_header("bad name!", -5) == "bad_name_;dur=0.0"
    assert build_server_timing_header("x", float("nan"), 'a"b') == 'x;dur=0.0;desc="ab"'


@pytest.mark.asyncio
async def test_forwards_with_access_token_and_relays_response(backend_url):
    ctx = make_context(
        cookies=session_cookies(), headers={"x-request-id": "incoming-1"}
    )
    with respx.mock(base_url=BACKEND_URL) as backend:
        route = backend.get("/v1/me").respond(
            200,
            json={"id": "u1"},
            headers={"x-request-id": "upstream-1", "set-cookie": "backend=1; Path=/"},
        )
        response = await proxy_backend_request(ctx, "/v1/me")

    sent = route.calls.last.request
    assert sent.headers["authorization"] == f"Bearer {ACCESS_TOKEN}"
    assert sent.headers["x-request-id"] == "incoming-1"
    assert response.status_code == 200
    assert json.loads(response.body) == {"id": "u1"}
    assert response.headers["x-request-id"] == "upstream-1"
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["server-timing"].startswith("backend_proxy;dur=")
    assert "set-cookie" not in response.headers


@pytest.mark.asyncio
async def test_relays_upstream_cache_control_and_json_body(backend_url):
    ctx = make_context(method="POST", cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        route = backend.post("/v1/orgs").respond(
            201, json={"org_id": "acme"}, headers={"cache-control": "private, max-age=5"}
        )
        response = await proxy_backend_request(
            ctx, "/v1/orgs", method="POST", json_body={"name": "Acme"}
        )

    sent = route.calls.last.request
    assert json.loads(sent.content) == {"name": "Acme"}
    assert sent.headers["content-type"] == "application/json"
    assert response.status_code == 201
    assert response.headers["cache-control"] == "private, max-age=5"


@pytest.mark.asyncio
async def test_missing_session_fails_fast(backend_url):
    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as backend:
        route = backend.route()
        response = await proxy_backend_request(make_context(), "/v1/me")

    assert response.status_code == 401
    assert json.loads(response.body) == {"error": "unauthorized"}
    assert not route.called


@pytest.mark.asyncio
async def test_expiring_session_keeps_cookies_without_calling_backend(backend_url):
    soon = int((time.time() + 20) * 1000)
    ctx = make_context(cookies=session_cookies(expires_at=soon))
    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as backend:
        route = backend.route()
        response = await proxy_backend_request(ctx, "/v1/me")

    assert response.status_code == 401
    assert json.loads(response.body) == {"error": "unauthorized"}
    assert cleared_cookie_names(response) == set()
    assert not route.called


@pytest.mark.asyncio
async def test_upstream_401_is_preserved_and_clears_cookies(backend_url):
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/me").respond(401, json={"detail": "token revoked"})
        response = await proxy_backend_request(
            make_context(cookies=session_cookies()), "/v1/me"
        )

    assert response.status_code == 401
    assert json.loads(response.body) == {"detail": "token revoked"}
    assert "gw_access_token" in cleared_cookie_names(response)


@pytest.mark.asyncio
async def test_identity_token_selection(backend_url):
    with respx.mock(base_url=BACKEND_URL) as backend:
        route = backend.get("/v1/dashboard/bootstrap").respond(200, json={})
        await proxy_backend_request(
            make_context(cookies=session_cookies()),
            "/v1/dashboard/bootstrap",
            token_type=TokenType.ID,
            timing_label="dashboard_summary",
        )

    assert route.calls.last.request.headers["authorization"] == f"Bearer {ID_TOKEN}"


@pytest.mark.asyncio
async def test_identity_token_missing_fails_fast(backend_url):
    ctx = make_context(cookies=session_cookies(id_token=None))
    response = await proxy_backend_request(ctx, "/v1/x", token_type=TokenType.ID)
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exception, status, error",
    [
        (httpx.ReadTimeout("slow"), 504, "upstream_timeout"),
        (httpx.ConnectError("refused"), 502, "bad_gateway"),
    ],
)
async def test_transport_failures_map_to_gateway_errors(backend_url, exception, status, error):
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/me").mock(side_effect=exception)
        response = await proxy_backend_request(
            make_context(cookies=session_cookies()), "/v1/me"
        )

    assert response.status_code == status
    assert json.loads(response.body) == {"error": error}


@pytest.mark.asyncio
async def test_unconfigured_backend_returns_503(monkeypatch):
    monkeypatch.setattr("gateway.backend.forwarder.BACKEND_API_URL", "")
    response = await proxy_backend_request(make_context(cookies=session_cookies()), "/v1/me")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_no_content_and_non_json_responses(backend_url):
    ctx = make_context(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.delete("/v1/thing").respond(204)
        backend.get("/v1/report").respond(
            200, content=b"a,b\n1,2\n", headers={"content-type": "text/csv"}
        )
        deleted = await proxy_backend_request(ctx, "/v1/thing", method="DELETE")
        report = await proxy_backend_request(ctx, "/v1/report")

    assert deleted.status_code == 204
    assert deleted.body == b""
    assert report.body == b"a,b\n1,2\n"
    assert report.headers["content-type"].startswith("text/csv")


@pytest.mark.asyncio
async def test_public_request_sends_no_credentials(backend_url):
    ctx = make_context(method="POST", cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        route = backend.post("/v1/shares/s1/events").respond(202, json={"ok": True})
        response = await public_backend_request(
            ctx,
            "/v1/shares/s1/events",
            method="POST",
            headers={"content-type": "application/json"},
            body=b'{"type":"view"}',
        )

    sent = route.calls.last.request
    assert "authorization" not in sent.headers
    assert sent.content == b'{"type":"view"}'
    assert response.status_code == 202
    assert response.headers["server-timing"].startswith("backend_public_proxy;dur=")
