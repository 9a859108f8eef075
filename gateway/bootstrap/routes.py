"""
Bootstrap routes: one request per dashboard page instead of several.

Each handler fans out to sibling ``/api`` routes through
``gateway.bootstrap.internal`` and reports either the merged payload or the
first failure of a required call. Partial data is never returned for a
required call; optional ones (member lists, the guide spec preview) fall back
to an empty value when they fail.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from gateway.bootstrap.internal import (
    UNAUTHORIZED_MESSAGE,
    InternalFetchResult,
    apply_bootstrap_meta,
    bootstrap_failure_response,
    bootstrap_response,
    bootstrap_success_response,
    fetch_all,
    fetch_internal_json,
    first_failed_result,
    merge_cookie_header,
    summarize_failure,
)
from gateway.context import RequestContext, encode_segment, get_request_context
from gateway.vars import GUIDE_DETAIL_TIMEOUT_SECONDS, WORKFLOW_SUMMARY_TIMEOUT_SECONDS

router = APIRouter(prefix="/api")
logger = logging.getLogger("uvicorn.error")

GUIDE_NOT_FOUND_MESSAGE = "Workflow not found or you do not have access."
SPEC_TIMEOUT_MESSAGE = "Guide preview is taking longer than expected."
VERSION_DETAIL_MESSAGE = "Version detail is unavailable for this release."
SPEC_UNAVAILABLE_MESSAGE = "Guide spec is not available for this version."
WORKFLOW_BOOTSTRAP_MESSAGE = "Unable to load workflow bootstrap."

ADMIN_ROLES = frozenset({"org_owner", "org_admin"})
EMPTY_MEMBERS = {"members": []}
DEFAULT_PAGE_LIMIT = "25"


def _as_dict(data: Any) -> Dict[str, Any]:
    return data if isinstance(data, dict) else {}


def _org_base(org_id: str) -> str:
    return f"/api/orgs/{encode_segment(org_id)}"


@router.get("/dashboard/bootstrap")
async def dashboard_bootstrap(ctx: RequestContext = Depends(get_request_context)):
    me, usage, orgs, invites = await fetch_all(
        ctx, "/api/me", "/api/usage", "/api/orgs", "/api/me/invites"
    )
    return bootstrap_response(
        lambda: {
            "me": me.data,
            "usage": usage.data,
            "orgs": orgs.data,
            "invites": _as_dict(invites.data).get("invites") or [],
        },
        me,
        usage,
        orgs,
        invites,
        failure_message="Unable to load dashboard bootstrap.",
    )


@router.get("/dashboard/account/bootstrap")
async def account_bootstrap(ctx: RequestContext = Depends(get_request_context)):
    me, orgs = await fetch_all(ctx, "/api/me", "/api/orgs")
    return bootstrap_response(
        lambda: {"me": me.data, "orgs": orgs.data},
        me,
        orgs,
        failure_message="Unable to load account bootstrap.",
    )


@router.get("/orgs/{org_id}/members/bootstrap")
async def members_bootstrap(
    org_id: str, ctx: RequestContext = Depends(get_request_context)
):
    members, me = await fetch_all(
        ctx, f"{_org_base(org_id)}/members", "/api/me"
    )
    return bootstrap_response(
        lambda: {"members": members.data, "me": me.data},
        members,
        me,
        failure_message="Unable to load members bootstrap.",
    )


@router.get("/orgs/{org_id}/workspace-overview/bootstrap")
async def workspace_overview_bootstrap(
    org_id: str, ctx: RequestContext = Depends(get_request_context)
):
    base = _org_base(org_id)
    org, workflows, alerts = await fetch_all(
        ctx, base, f"{base}/workflows", f"{base}/alerts?status=open"
    )
    return bootstrap_response(
        lambda: {"org": org.data, "workflows": workflows.data, "alerts": alerts.data},
        org,
        workflows,
        alerts,
        failure_message="Unable to load workspace bootstrap.",
    )


@router.get("/orgs/{org_id}/alerts/bootstrap")
async def alerts_bootstrap(
    org_id: str,
    ctx: RequestContext = Depends(get_request_context),
    status: Optional[str] = None,
):
    """Alerts and the caller are required; workflows and members fall back to empty lists."""
    base = _org_base(org_id)
    status = (status or "").strip()
    alerts_path = f"{base}/alerts?{urlencode({'status': status})}" if status else f"{base}/alerts"
    alerts, workflows, me, members = await fetch_all(
        ctx, alerts_path, f"{base}/workflows", "/api/me", f"{base}/members"
    )
    return bootstrap_response(
        lambda: {
            "alerts": alerts.data,
            "workflows": workflows.data if workflows.ok else {"workflows": []},
            "me": me.data,
            "members": members.data if members.ok else dict(EMPTY_MEMBERS),
        },
        alerts,
        workflows,
        me,
        members,
        failure_message="Unable to load alerts bootstrap.",
        required=[alerts, me],
    )


@router.get("/orgs/{org_id}/compliance/bootstrap")
async def compliance_bootstrap(
    org_id: str, ctx: RequestContext = Depends(get_request_context)
):
    base = _org_base(org_id)
    org, workflows, members = await fetch_all(
        ctx, base, f"{base}/workflows", f"{base}/members"
    )
    return bootstrap_response(
        lambda: {"org": org.data, "workflows": workflows.data, "members": members.data},
        org,
        workflows,
        members,
        failure_message="Unable to load compliance bootstrap.",
    )


@router.get("/orgs/{org_id}/audit/bootstrap")
async def audit_bootstrap(
    org_id: str,
    ctx: RequestContext = Depends(get_request_context),
    limit: Optional[str] = None,
    cursor: Optional[str] = None,
):
    """
    Audit log page. Only the audit call is required; a 403 from it is reported
    as ``forbidden`` so the page can explain the missing permission.
    """
    base = _org_base(org_id)
    query = {"limit": limit if limit is not None else DEFAULT_PAGE_LIMIT}
    if cursor and cursor.strip():
        query["cursor"] = cursor.strip()
    audit, members = await fetch_all(
        ctx, f"{base}/audit?{urlencode(query)}", f"{base}/members"
    )
    if audit.status == 403:
        response = JSONResponse(status_code=403, content={"error": "forbidden"})
        apply_bootstrap_meta(response, audit, members)
        return response
    return bootstrap_response(
        lambda: {
            "audit": audit.data,
            "members": members.data if members.ok else dict(EMPTY_MEMBERS),
        },
        audit,
        members,
        failure_message="Unable to load audit bootstrap.",
        required=[audit],
    )


@router.get("/orgs/{org_id}/runs/bootstrap")
async def runs_bootstrap(
    org_id: str,
    ctx: RequestContext = Depends(get_request_context),
    limit: Optional[str] = None,
    workflow_id: Optional[str] = None,
    cursor: Optional[str] = None,
):
    base = _org_base(org_id)
    query = {"limit": limit if limit is not None else DEFAULT_PAGE_LIMIT}
    if workflow_id and workflow_id.strip():
        query["workflow_id"] = workflow_id.strip()
    if cursor and cursor.strip():
        query["cursor"] = cursor.strip()
    runs, workflows = await fetch_all(
        ctx, f"{base}/runs?{urlencode(query)}", f"{base}/workflows"
    )
    return bootstrap_response(
        lambda: {"runs": runs.data, "workflows": workflows.data},
        runs,
        workflows,
        failure_message="Unable to load runs bootstrap.",
    )


@router.get("/orgs/{org_id}/docs/bootstrap")
async def docs_bootstrap(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    base = _org_base(org_id)
    library, assignments = await fetch_all(
        ctx, f"{base}/docs/library", f"{base}/tasks/assigned-to-me?status=open"
    )
    return bootstrap_response(
        lambda: {"library": library.data, "myAssignments": assignments.data},
        library,
        assignments,
        failure_message="Unable to load docs bootstrap.",
    )


@router.get("/orgs/{org_id}/home/bootstrap")
async def home_bootstrap(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    home, notifications = await fetch_all(
        ctx,
        f"{_org_base(org_id)}/home",
        "/api/me/notifications?status=unread&limit=10",
    )
    return bootstrap_response(
        lambda: {"home": home.data, "notifications": notifications.data},
        home,
        notifications,
        failure_message="Unable to load home bootstrap.",
    )


@router.get("/orgs/{org_id}/insights/bootstrap")
async def insights_bootstrap(
    org_id: str, ctx: RequestContext = Depends(get_request_context)
):
    base = _org_base(org_id)
    suffix = ctx.query_suffix()
    team, mine = await fetch_all(ctx, f"{base}/insights{suffix}", f"{base}/insights/me{suffix}")
    return bootstrap_response(
        lambda: {"teamInsights": team.data, "myInsights": mine.data},
        team,
        mine,
        failure_message="Unable to load insights bootstrap.",
    )


@router.get("/orgs/{org_id}/tasks/bootstrap")
async def tasks_bootstrap(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    base = _org_base(org_id)
    tasks, assignments, teammates = await fetch_all(
        ctx, f"{base}/tasks", f"{base}/tasks/assigned-to-me", f"{base}/teammates"
    )
    return bootstrap_response(
        lambda: {
            "tasks": tasks.data,
            "myAssignments": assignments.data,
            "teammates": teammates.data,
        },
        tasks,
        assignments,
        teammates,
        failure_message="Unable to load tasks bootstrap.",
    )


@router.get("/orgs/{org_id}/teammates/bootstrap")
async def teammates_bootstrap(
    org_id: str, ctx: RequestContext = Depends(get_request_context)
):
    teammates = await fetch_internal_json(ctx, f"{_org_base(org_id)}/teammates")
    return bootstrap_response(
        lambda: {"teammates": teammates.data},
        teammates,
        failure_message="Unable to load teammates bootstrap.",
    )


def membership_role(org_data: Any) -> Optional[str]:
    return _as_dict(_as_dict(org_data).get("membership")).get("role")


async def _members_for_admin(
    ctx: RequestContext, base: str, role: Optional[str], cookie_header: Optional[str]
) -> Optional[InternalFetchResult]:
    """The members call for owners and admins. None for other roles or when it fails."""
    if role not in ADMIN_ROLES:
        return None
    members = await fetch_internal_json(ctx, f"{base}/members", cookie_header=cookie_header)
    if not members.ok:
        logger.info(f"[Bootstrap] Members list unavailable ({members.status}); using empty list")
        return None
    return members


def _with_optional(*results: Optional[InternalFetchResult]) -> List[InternalFetchResult]:
    return [r for r in results if r is not None]


@router.get("/orgs/{org_id}/settings/bootstrap")
async def settings_bootstrap(
    org_id: str, ctx: RequestContext = Depends(get_request_context)
):
    """Organisation settings; the members list is only loaded for owners and admins."""
    base = _org_base(org_id)
    org = await fetch_internal_json(ctx, base)
    failure = bootstrap_failure_response([org], "Unable to load settings bootstrap.")
    if failure is not None:
        return failure

    cookies = merge_cookie_header(ctx.cookie_header, org.set_cookies)
    members = await _members_for_admin(ctx, base, membership_role(org.data), cookies)
    return bootstrap_success_response(
        {
            "org": org.data,
            "members": members.data if members is not None else dict(EMPTY_MEMBERS),
        },
        _with_optional(org, members),
    )


def _workflow_ids(workflows_data: Any) -> List[str]:
    listed = _as_dict(workflows_data).get("workflows")
    if not isinstance(listed, list):
        return []
    return [
        str(w["workflow_id"]) for w in listed if isinstance(w, dict) and w.get("workflow_id")
    ]


@router.get("/orgs/{org_id}/workflows/bootstrap")
async def workflows_bootstrap(
    org_id: str, ctx: RequestContext = Depends(get_request_context)
):
    """
    Workflow list page.

    Loads the workflow list and the organisation, then the members list for
    admins, then every workflow's detail in parallel to report its latest
    version. A failed detail call maps that workflow to ``None``.
    """
    base = _org_base(org_id)
    workflows, org = await fetch_all(ctx, f"{base}/workflows", base)
    failure = bootstrap_failure_response(
        [workflows, org], "Unable to load workflows bootstrap."
    )
    if failure is not None:
        return failure

    cookies = merge_cookie_header(ctx.cookie_header, workflows.set_cookies + org.set_cookies)
    members = await _members_for_admin(ctx, base, membership_role(org.data), cookies)

    workflow_ids = _workflow_ids(workflows.data)
    details = await fetch_all(
        ctx,
        *(f"{base}/workflows/{encode_segment(wid)}" for wid in workflow_ids),
        cookie_header=cookies,
    )
    latest_versions = {
        wid: _as_dict(detail.data).get("latest_version") if detail.ok else None
        for wid, detail in zip(workflow_ids, details)
    }

    return bootstrap_success_response(
        {
            "workflows": workflows.data,
            "org": org.data,
            "members": members.data if members is not None else dict(EMPTY_MEMBERS),
            "latestVersions": latest_versions,
        },
        _with_optional(workflows, org, members),
    )


def select_latest_version(
    workflow: Dict[str, Any], versions: List[Dict[str, Any]]
) -> Optional[Dict[str, Any]]:
    """The version named by ``latest_version_id``, else the first listed one."""
    latest_id = workflow.get("latest_version_id")
    if isinstance(latest_id, str) and latest_id.strip():
        for version in versions:
            if version.get("version_id") == latest_id:
                return version
    return versions[0] if versions else None


@router.get("/orgs/{org_id}/workflows/{workflow_id}/bootstrap")
async def workflow_bootstrap(
    org_id: str, workflow_id: str, ctx: RequestContext = Depends(get_request_context)
):
    """
    Workflow detail page, built from the backend's workflow summary.

    The summary call is bounded by ``WORKFLOW_SUMMARY_TIMEOUT_SECONDS``. A
    summary without a workflow object is answered with 502.
    """
    base = _org_base(org_id)
    summary = await fetch_internal_json(
        ctx,
        f"{base}/workflow-summary/{encode_segment(workflow_id)}",
        timeout=WORKFLOW_SUMMARY_TIMEOUT_SECONDS,
    )
    failure = bootstrap_failure_response([summary], WORKFLOW_BOOTSTRAP_MESSAGE)
    if failure is not None:
        return failure

    payload = _as_dict(summary.data)
    workflow = payload.get("workflow")
    if not isinstance(workflow, dict):
        logger.warning("[Bootstrap] Workflow summary carried no workflow object")
        response = JSONResponse(status_code=502, content={"error": WORKFLOW_BOOTSTRAP_MESSAGE})
        apply_bootstrap_meta(response, summary)
        return response

    raw_versions = payload.get("versions")
    versions = (
        [v for v in raw_versions if isinstance(v, dict)] if isinstance(raw_versions, list) else []
    )
    membership = payload.get("membership")
    cookies = merge_cookie_header(ctx.cookie_header, summary.set_cookies)
    members = await _members_for_admin(
        ctx, base, _as_dict(membership).get("role"), cookies
    )
    recent_runs = payload.get("recent_runs")

    return bootstrap_success_response(
        {
            "detail": {
                "workflow": workflow,
                "latest_version": select_latest_version(workflow, versions),
            },
            "versions": {"versions": versions},
            "org": {"membership": membership},
            "members": members.data if members is not None else dict(EMPTY_MEMBERS),
            "runs": {
                "runs": recent_runs if isinstance(recent_runs, list) else [],
                "next_cursor": payload.get("next_runs_cursor"),
            },
            "runsError": None,
            "runsRequestId": None,
        },
        _with_optional(summary, members),
    )


def _created_at(version: Dict[str, Any]) -> float:
    raw = version.get("created_at")
    if not isinstance(raw, str) or not raw:
        return float("-inf")
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return float("-inf")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def sort_versions_newest_first(versions: Any) -> List[Dict[str, Any]]:
    if not isinstance(versions, list):
        return []
    usable = [v for v in versions if isinstance(v, dict) and v.get("version_id")]
    return sorted(usable, key=_created_at, reverse=True)


def select_version_id(
    requested: str, workflow: Any, versions: List[Dict[str, Any]]
) -> Optional[str]:
    """
    The requested version when it exists, else the workflow's latest version,
    else the newest version by ``created_at``.
    """
    if requested and any(v["version_id"] == requested for v in versions):
        return requested
    latest = _as_dict(_as_dict(workflow).get("latest_version")).get("version_id")
    if latest:
        return latest
    return versions[0]["version_id"] if versions else None


def describe_spec_error(
    spec: Optional[InternalFetchResult], detail: Optional[InternalFetchResult]
) -> Optional[str]:
    if spec is None:
        return None
    if spec.ok and (detail is None or detail.ok):
        return None
    if spec.timed_out or (detail is not None and detail.timed_out):
        return SPEC_TIMEOUT_MESSAGE
    if detail is not None and not detail.ok:
        return VERSION_DETAIL_MESSAGE
    return SPEC_UNAVAILABLE_MESSAGE


@router.get("/workflows/{workflow_id}/guide/bootstrap")
async def workflow_guide_bootstrap(
    workflow_id: str,
    ctx: RequestContext = Depends(get_request_context),
    version_id: Optional[str] = None,
    versionId: Optional[str] = None,
):
    """
    Guide page bootstrap.

    Runs in three steps: resolve the workflow's organisation, load the
    workflow, its versions and the organisation, then load the guide spec and
    version detail for the selected version. The last step is bounded by
    ``GUIDE_DETAIL_TIMEOUT_SECONDS`` and its failures only set ``specError``.
    Cookies refreshed by an earlier step are forwarded to the later ones.
    """
    encoded_workflow = encode_segment(workflow_id)
    requested_version = (versionId or version_id or "").strip()

    resolved = await fetch_internal_json(ctx, f"/api/workflows/{encoded_workflow}/resolve")
    org_id = _as_dict(resolved.data).get("org_id") if resolved.ok else None
    if not org_id:
        failed = first_failed_result(resolved)
        status = failed.status if failed else 404
        error = UNAUTHORIZED_MESSAGE if status == 401 else GUIDE_NOT_FOUND_MESSAGE
        logger.info(f"[Bootstrap] Guide resolve for workflow failed with {status}")
        response = JSONResponse(status_code=status, content={"error": error})
        apply_bootstrap_meta(response, resolved)
        return response

    cookies = merge_cookie_header(ctx.cookie_header, resolved.set_cookies)
    workflow_base = f"/api/orgs/{encode_segment(org_id)}/workflows/{encoded_workflow}"
    workflow, versions, org = await fetch_all(
        ctx,
        workflow_base,
        f"{workflow_base}/versions",
        f"/api/orgs/{encode_segment(org_id)}",
        cookie_header=cookies,
    )
    metas = [resolved, workflow, versions, org]

    # The organisation call only supplies the membership role, so its failure is tolerated
    summary = summarize_failure(
        [workflow, versions], "Unable to load workflow guide bootstrap."
    )
    if summary is not None:
        status, error = summary
        response = JSONResponse(status_code=status, content={"error": error})
        apply_bootstrap_meta(response, *metas)
        return response

    sorted_versions = sort_versions_newest_first(_as_dict(versions.data).get("versions"))
    selected = select_version_id(requested_version, workflow.data, sorted_versions)

    spec: Optional[InternalFetchResult] = None
    detail: Optional[InternalFetchResult] = None
    if selected:
        cookies = merge_cookie_header(
            cookies, [c for r in (workflow, versions, org) for c in r.set_cookies]
        )
        version_base = f"{workflow_base}/versions/{encode_segment(selected)}"
        spec, detail = await fetch_all(
            ctx,
            f"{version_base}/guide-spec",
            version_base,
            timeout=GUIDE_DETAIL_TIMEOUT_SECONDS,
            cookie_header=cookies,
        )
        metas.extend([spec, detail])

    membership = _as_dict(_as_dict(org.data).get("membership")) if org.ok else {}
    response = JSONResponse(
        content={
            "orgId": org_id,
            "workflow": workflow.data,
            "versions": sorted_versions,
            "membershipRole": membership.get("role"),
            "selectedVersionId": selected,
            "spec": spec.data if spec is not None and spec.ok else None,
            "versionDetail": (
                _as_dict(detail.data).get("version")
                if detail is not None and detail.ok
                else None
            ),
            "specError": describe_spec_error(spec, detail),
        }
    )
    apply_bootstrap_meta(response, *metas)
    return response
