import respx

from gateway.bootstrap.internal import InternalFetchResult
from gateway.bootstrap.routes import (
    SPEC_TIMEOUT_MESSAGE,
    SPEC_UNAVAILABLE_MESSAGE,
    VERSION_DETAIL_MESSAGE,
    WORKFLOW_BOOTSTRAP_MESSAGE,
    describe_spec_error,
    select_latest_version,
    select_version_id,
    sort_versions_newest_first,
)
from gateway.utils_tests.gateway_client import (
    BACKEND_URL,
    gateway_client,
    session_cookies,
)


def _mock_dashboard_backend(backend, me_status=200, usage_status=200):
    backend.get("/v1/me").respond(
        me_status,
        json={"id": "u1"},
        headers={"cache-control": "private, max-age=60", "x-request-id": "req-me"},
    )
    backend.get("/v1/usage").respond(
        usage_status, json={"seats": 3}, headers={"cache-control": "private, max-age=30"}
    )
    backend.get("/v1/orgs").respond(
        200, json={"orgs": [{"org_id": "acme"}]}, headers={"cache-control": "private, max-age=120"}
    )
    return backend.get("/v1/me/invites").respond(
        200,
        json={"invites": [{"invite_id": "i1"}]},
        headers={"cache-control": "private, max-age=90"},
    )


def test_dashboard_bootstrap_merges_sections(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        _mock_dashboard_backend(backend)
        response = client.get("/api/dashboard/bootstrap")

    assert response.status_code == 200
    assert response.json() == {
        "me": {"id": "u1"},
        "usage": {"seats": 3},
        "orgs": {"orgs": [{"org_id": "acme"}]},
        "invites": [{"invite_id": "i1"}],
    }
    assert response.headers["cache-control"] == "private, max-age=30"
    assert response.headers["x-request-id"] == "req-me"
    assert response.headers["server-timing"].count("backend_proxy;dur=") == 4


def test_dashboard_bootstrap_without_session_is_unauthorized(backend_url):
    client = gateway_client()
    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as backend:
        route = backend.route()
        response = client.get("/api/dashboard/bootstrap")

    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized"}
    assert response.headers["cache-control"] == "no-store"
    assert not route.called


def test_dashboard_bootstrap_hides_constituent_error(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as backend:
        _mock_dashboard_backend(backend, usage_status=500)
        response = client.get("/api/dashboard/bootstrap")

    assert response.status_code == 500
    assert response.json() == {"error": "Unable to load dashboard bootstrap."}


def test_dashboard_bootstrap_upstream_401_clears_session(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as backend:
        _mock_dashboard_backend(backend, me_status=401)
        response = client.get("/api/dashboard/bootstrap")

    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized"}
    cleared = [c for c in response.headers.get_list("set-cookie") if c.startswith("gw_access_token=")]
    assert len(cleared) == 1


def test_account_bootstrap(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/me").respond(200, json={"id": "u1"})
        backend.get("/v1/orgs").respond(200, json={"orgs": []})
        response = client.get("/api/dashboard/account/bootstrap")

    assert response.status_code == 200
    assert response.json() == {"me": {"id": "u1"}, "orgs": {"orgs": []}}
    # forwarded responses without cache-control are no-store
    assert response.headers["cache-control"] == "no-store"


def test_members_bootstrap_is_not_captured_by_member_route(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/orgs/acme/members").respond(200, json={"members": [{"user_id": "u1"}]})
        backend.get("/v1/me").respond(200, json={"id": "u1"})
        response = client.get("/api/orgs/acme/members/bootstrap")

    assert response.status_code == 200
    assert response.json() == {"members": {"members": [{"user_id": "u1"}]}, "me": {"id": "u1"}}


def test_workspace_overview_bootstrap_requests_open_alerts(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/orgs/acme").respond(200, json={"org_id": "acme"})
        backend.get("/v1/orgs/acme/workflows").respond(200, json={"workflows": []})
        alerts = backend.get("/v1/orgs/acme/alerts").respond(200, json={"alerts": []})
        response = client.get("/api/orgs/acme/workspace-overview/bootstrap")

    assert response.status_code == 200
    assert response.json()["org"] == {"org_id": "acme"}
    assert alerts.calls.last.request.url.params["status"] == "open"


def _mock_guide_backend(backend):
    backend.get("/v1/workflows/wf1/resolve").respond(200, json={"org_id": "acme"})
    backend.get("/v1/orgs/acme/workflows/wf1").respond(
        200, json={"workflow_id": "wf1", "latest_version": {"version_id": "v2"}}
    )
    backend.get("/v1/orgs/acme/workflows/wf1/versions").respond(
        200,
        json={
            "versions": [
                {"version_id": "v1", "created_at": "2024-01-01T00:00:00Z"},
                {"version_id": "v2", "created_at": "2024-03-01T00:00:00Z"},
            ]
        },
    )
    backend.get("/v1/orgs/acme").respond(200, json={"membership": {"role": "admin"}})


def test_guide_bootstrap_selects_requested_version(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        _mock_guide_backend(backend)
        backend.get("/v1/orgs/acme/workflows/wf1/versions/v1/guide-spec").respond(
            200, json={"steps": [1, 2]}
        )
        backend.get("/v1/orgs/acme/workflows/wf1/versions/v1").respond(
            200, json={"version": {"version_id": "v1"}}
        )
        response = client.get("/api/workflows/wf1/guide/bootstrap?versionId=v1")

    assert response.status_code == 200
    body = response.json()
    assert body["orgId"] == "acme"
    assert [v["version_id"] for v in body["versions"]] == ["v2", "v1"]
    assert body["membershipRole"] == "admin"
    assert body["selectedVersionId"] == "v1"
    assert body["spec"] == {"steps": [1, 2]}
    assert body["versionDetail"] == {"version_id": "v1"}
    assert body["specError"] is None


def test_guide_bootstrap_degrades_when_spec_missing(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        _mock_guide_backend(backend)
        backend.get("/v1/orgs/acme/workflows/wf1/versions/v2/guide-spec").respond(404, json={})
        backend.get("/v1/orgs/acme/workflows/wf1/versions/v2").respond(
            200, json={"version": {"version_id": "v2"}}
        )
        response = client.get("/api/workflows/wf1/guide/bootstrap")

    assert response.status_code == 200
    body = response.json()
    assert body["selectedVersionId"] == "v2"
    assert body["spec"] is None
    assert body["specError"] == SPEC_UNAVAILABLE_MESSAGE


def test_guide_bootstrap_unresolved_workflow(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/workflows/wf1/resolve").respond(200, json={"org_id": None})
        response = client.get("/api/workflows/wf1/guide/bootstrap")

    assert response.status_code == 404
    assert response.json() == {"error": "Workflow not found or you do not have access."}


def test_guide_bootstrap_without_session(backend_url):
    response = gateway_client().get("/api/workflows/wf1/guide/bootstrap")
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized"}


def test_sort_and_select_versions():
    versions = sort_versions_newest_first(
        [
            {"version_id": "old", "created_at": "2023-01-01T00:00:00Z"},
            {"version_id": "new", "created_at": "2024-01-01T00:00:00+00:00"},
            {"version_id": "undated"},
            "junk",
        ]
    )
    assert [v["version_id"] for v in versions] == ["new", "old", "undated"]
    assert select_version_id("old", {}, versions) == "old"
    assert select_version_id("unknown", {"latest_version": {"version_id": "L"}}, versions) == "L"
    assert select_version_id("", None, versions) == "new"
    assert select_version_id("", None, []) is None


def test_describe_spec_error():
    ok = InternalFetchResult(ok=True, status=200)
    timed_out = InternalFetchResult(ok=False, status=504, timed_out=True)
    failed = InternalFetchResult(ok=False, status=500)

    assert describe_spec_error(None, None) is None
    assert describe_spec_error(ok, ok) is None
    assert describe_spec_error(timed_out, ok) == SPEC_TIMEOUT_MESSAGE
    assert describe_spec_error(ok, timed_out) == SPEC_TIMEOUT_MESSAGE
    assert describe_spec_error(ok, failed) == VERSION_DETAIL_MESSAGE
    assert describe_spec_error(failed, ok) == SPEC_UNAVAILABLE_MESSAGE


def test_alerts_bootstrap_tolerates_missing_members(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        alerts = backend.get("/v1/orgs/acme/alerts").respond(200, json={"alerts": [{"id": "a1"}]})
        backend.get("/v1/orgs/acme/workflows").respond(500, json={})
        backend.get("/v1/me").respond(200, json={"id": "u1"})
        backend.get("/v1/orgs/acme/members").respond(403, json={})
        response = client.get("/api/orgs/acme/alerts/bootstrap?status=%20open%20")

    assert response.status_code == 200
    assert response.json() == {
        "alerts": {"alerts": [{"id": "a1"}]},
        "workflows": {"workflows": []},
        "me": {"id": "u1"},
        "members": {"members": []},
    }
    assert alerts.calls.last.request.url.params["status"] == "open"


def test_alerts_bootstrap_requires_caller(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as backend:
        backend.get("/v1/orgs/acme/alerts").respond(200, json={"alerts": []})
        backend.get("/v1/orgs/acme/workflows").respond(200, json={"workflows": []})
        backend.get("/v1/me").respond(401, json={})
        backend.get("/v1/orgs/acme/members").respond(200, json={"members": []})
        response = client.get("/api/orgs/acme/alerts/bootstrap")

    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized"}


def test_compliance_bootstrap_requires_every_section(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/orgs/acme").respond(200, json={"org_id": "acme"})
        backend.get("/v1/orgs/acme/workflows").respond(200, json={"workflows": []})
        backend.get("/v1/orgs/acme/members").respond(503, json={})
        response = client.get("/api/orgs/acme/compliance/bootstrap")

    assert response.status_code == 503
    assert response.json() == {"error": "Unable to load compliance bootstrap."}


def test_audit_bootstrap_defaults_limit_and_reports_forbidden(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        audit = backend.get("/v1/orgs/acme/audit").respond(200, json={"events": []})
        backend.get("/v1/orgs/acme/members").respond(200, json={"members": []})
        ok = client.get("/api/orgs/acme/audit/bootstrap?cursor=c2")

    assert ok.status_code == 200
    assert ok.json() == {"audit": {"events": []}, "members": {"members": []}}
    params = audit.calls.last.request.url.params
    assert params["limit"] == "25"
    assert params["cursor"] == "c2"

    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/orgs/acme/audit").respond(403, json={"detail": "admins only"})
        backend.get("/v1/orgs/acme/members").respond(200, json={"members": []})
        forbidden = client.get("/api/orgs/acme/audit/bootstrap")

    assert forbidden.status_code == 403
    assert forbidden.json() == {"error": "forbidden"}


def test_runs_bootstrap_builds_run_query(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        runs = backend.get("/v1/orgs/acme/runs").respond(200, json={"runs": []})
        backend.get("/v1/orgs/acme/workflows").respond(200, json={"workflows": []})
        response = client.get("/api/orgs/acme/runs/bootstrap?limit=10&workflow_id=wf1&cursor=%20")

    assert response.status_code == 200
    assert response.json() == {"runs": {"runs": []}, "workflows": {"workflows": []}}
    params = runs.calls.last.request.url.params
    assert params["limit"] == "10"
    assert params["workflow_id"] == "wf1"
    assert "cursor" not in params


def test_page_bootstraps_merge_their_sections(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/orgs/acme/docs/library").respond(200, json={"docs": []})
        assigned = backend.get("/v1/orgs/acme/tasks/assigned-to-me").respond(
            200, json={"tasks": []}
        )
        backend.get("/v1/orgs/acme/home").respond(200, json={"cards": []})
        notifications = backend.get("/v1/me/notifications").respond(200, json={"items": []})
        backend.get("/v1/orgs/acme/insights").respond(200, json={"team": 1})
        backend.get("/v1/orgs/acme/insights/me").respond(200, json={"mine": 1})
        backend.get("/v1/orgs/acme/tasks").respond(200, json={"tasks": [{"id": "t1"}]})
        backend.get("/v1/orgs/acme/teammates").respond(200, json={"teammates": []})

        docs = client.get("/api/orgs/acme/docs/bootstrap")
        assert assigned.calls.last.request.url.params["status"] == "open"
        home = client.get("/api/orgs/acme/home/bootstrap")
        insights = client.get("/api/orgs/acme/insights/bootstrap?range=7d")
        tasks = client.get("/api/orgs/acme/tasks/bootstrap")
        teammates = client.get("/api/orgs/acme/teammates/bootstrap")

    assert docs.json() == {"library": {"docs": []}, "myAssignments": {"tasks": []}}
    assert home.json() == {"home": {"cards": []}, "notifications": {"items": []}}
    assert notifications.calls.last.request.url.params["status"] == "unread"
    assert insights.json() == {"teamInsights": {"team": 1}, "myInsights": {"mine": 1}}
    assert tasks.json() == {
        "tasks": {"tasks": [{"id": "t1"}]},
        "myAssignments": {"tasks": []},
        "teammates": {"teammates": []},
    }
    assert teammates.json() == {"teammates": {"teammates": []}}


def test_settings_bootstrap_loads_members_for_admins_only(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/orgs/acme").respond(200, json={"membership": {"role": "org_admin"}})
        members = backend.get("/v1/orgs/acme/members").respond(
            200, json={"members": [{"user_id": "u1"}]}
        )
        admin = client.get("/api/orgs/acme/settings/bootstrap")

    assert admin.json()["members"] == {"members": [{"user_id": "u1"}]}
    assert members.call_count == 1

    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as backend:
        backend.get("/v1/orgs/acme").respond(200, json={"membership": {"role": "member"}})
        members = backend.get("/v1/orgs/acme/members").respond(200, json={"members": []})
        regular = client.get("/api/orgs/acme/settings/bootstrap")

    assert regular.status_code == 200
    assert regular.json() == {
        "org": {"membership": {"role": "member"}},
        "members": {"members": []},
    }
    assert not members.called


def test_workflows_bootstrap_reports_latest_versions(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/orgs/acme/workflows").respond(
            200, json={"workflows": [{"workflow_id": "wf1"}, {"workflow_id": "wf2"}]}
        )
        backend.get("/v1/orgs/acme").respond(200, json={"membership": {"role": "org_owner"}})
        backend.get("/v1/orgs/acme/members").respond(500, json={})
        backend.get("/v1/orgs/acme/workflows/wf1").respond(
            200, json={"latest_version": {"version_id": "v3"}}
        )
        backend.get("/v1/orgs/acme/workflows/wf2").respond(404, json={})
        response = client.get("/api/orgs/acme/workflows/bootstrap")

    assert response.status_code == 200
    body = response.json()
    assert body["members"] == {"members": []}
    assert body["latestVersions"] == {"wf1": {"version_id": "v3"}, "wf2": None}


def test_workflows_bootstrap_fails_on_base_sections(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as backend:
        backend.get("/v1/orgs/acme/workflows").respond(401, json={})
        backend.get("/v1/orgs/acme").respond(200, json={})
        members = backend.get("/v1/orgs/acme/members")
        response = client.get("/api/orgs/acme/workflows/bootstrap")

    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized"}
    assert not members.called


def test_workflow_bootstrap_picks_latest_version(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL, assert_all_called=False) as backend:
        backend.get("/v1/orgs/acme/workflow-summary/wf1").respond(
            200,
            json={
                "membership": {"role": "member"},
                "workflow": {"workflow_id": "wf1", "latest_version_id": "v2"},
                "versions": [{"version_id": "v1"}, {"version_id": "v2"}],
                "recent_runs": [{"run_id": "r1"}],
                "next_runs_cursor": "c1",
            },
        )
        members = backend.get("/v1/orgs/acme/members")
        response = client.get("/api/orgs/acme/workflows/wf1/bootstrap")

    assert response.status_code == 200
    assert response.json() == {
        "detail": {
            "workflow": {"workflow_id": "wf1", "latest_version_id": "v2"},
            "latest_version": {"version_id": "v2"},
        },
        "versions": {"versions": [{"version_id": "v1"}, {"version_id": "v2"}]},
        "org": {"membership": {"role": "member"}},
        "members": {"members": []},
        "runs": {"runs": [{"run_id": "r1"}], "next_cursor": "c1"},
        "runsError": None,
        "runsRequestId": None,
    }
    assert not members.called


def test_workflow_bootstrap_without_workflow_is_bad_gateway(backend_url):
    client = gateway_client(cookies=session_cookies())
    with respx.mock(base_url=BACKEND_URL) as backend:
        backend.get("/v1/orgs/acme/workflow-summary/wf1").respond(200, json={"versions": []})
        response = client.get("/api/orgs/acme/workflows/wf1/bootstrap")

    assert response.status_code == 502
    assert response.json() == {"error": WORKFLOW_BOOTSTRAP_MESSAGE}


def test_select_latest_version():
    versions = [{"version_id": "v1"}, {"version_id": "v2"}]
    assert select_latest_version({"latest_version_id": "v2"}, versions) == {"version_id": "v2"}
    assert select_latest_version({"latest_version_id": "gone"}, versions) == {"version_id": "v1"}
    assert select_latest_version({"latest_version_id": " "}, versions) == {"version_id": "v1"}
    assert select_latest_version({}, []) is None
