"""
Proxy routes: one browser-facing ``/api/...`` endpoint per backend ``/v1/...`` path.

User-supplied path parameters are always percent-encoded with
``encode_segment`` before they are placed in an upstream path. Query strings
are passed through as received. Mutating endpoints require a valid CSRF token.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from gateway.auth.csrf import csrf_error_response, validate_csrf
from gateway.auth.session import TokenType
from gateway.backend.artifacts import (
    artifact_error,
    find_step_image,
    normalize_variant,
    relay_artifact,
    resolve_step_image_variant,
    response_json,
    safe_filename,
    version_section,
)
from gateway.backend.forwarder import proxy_backend_request, public_backend_request
from gateway.context import (
    RequestContext,
    body_or_empty_object,
    encode_segment,
    get_request_context,
    read_json_body,
)

router = APIRouter(prefix="/api")
logger = logging.getLogger("uvicorn.error")


async def _forward_json_body(
    ctx: RequestContext, request: Request, path: str, method: str
) -> Response:
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    payload = body_or_empty_object(await read_json_body(request))
    return await proxy_backend_request(ctx, path, method=method, json_body=payload)


def _org_path(org_id: str, suffix: str = "") -> str:
    return f"/v1/orgs/{encode_segment(org_id)}{suffix}"


def _workflow_path(org_id: str, workflow_id: str, suffix: str = "") -> str:
    return _org_path(org_id, f"/workflows/{encode_segment(workflow_id)}{suffix}")


def _is_success(response: Response) -> bool:
    return 200 <= response.status_code < 300


# --- Current user ---


@router.get("/me")
async def get_me(ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, "/v1/me")


@router.get("/me/profile")
async def get_profile(ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, "/v1/me/profile")


@router.patch("/me/profile")
async def update_profile(
    request: Request, ctx: RequestContext = Depends(get_request_context)
):
    return await _forward_json_body(ctx, request, "/v1/me/profile", "PATCH")


@router.get("/me/invites")
async def list_my_invites(ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, "/v1/me/invites")


@router.get("/me/notifications")
async def list_notifications(ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, f"/v1/me/notifications{ctx.query_suffix()}")


@router.post("/me/notifications/read-all")
async def mark_all_notifications_read(
    ctx: RequestContext = Depends(get_request_context),
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    return await proxy_backend_request(
        ctx, "/v1/me/notifications/read-all", method="POST", json_body={}
    )


@router.post("/me/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str, ctx: RequestContext = Depends(get_request_context)
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    return await proxy_backend_request(
        ctx,
        f"/v1/me/notifications/{encode_segment(notification_id)}/read",
        method="POST",
        json_body={},
    )


@router.get("/me/notification-settings")
async def get_notification_settings(ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, "/v1/me/notification-settings")


@router.patch("/me/notification-settings")
async def update_notification_settings(
    request: Request, ctx: RequestContext = Depends(get_request_context)
):
    return await _forward_json_body(ctx, request, "/v1/me/notification-settings", "PATCH")


@router.get("/usage")
async def get_usage(ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, "/v1/usage")


@router.get("/dashboard/summary")
async def get_dashboard_summary(ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx,
        "/v1/dashboard/bootstrap",
        token_type=TokenType.ID,
        timing_label="dashboard_summary",
    )


# --- Organisations ---


@router.get("/orgs")
async def list_orgs(ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, "/v1/orgs")


@router.post("/orgs")
async def create_org(request: Request, ctx: RequestContext = Depends(get_request_context)):
    return await _forward_json_body(ctx, request, "/v1/orgs", "POST")


@router.get("/orgs/{org_id}")
async def get_org(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, _org_path(org_id))


@router.patch("/orgs/{org_id}")
async def update_org(
    org_id: str, request: Request, ctx: RequestContext = Depends(get_request_context)
):
    return await _forward_json_body(ctx, request, _org_path(org_id), "PATCH")


@router.get("/orgs/{org_id}/members")
async def list_members(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, _org_path(org_id, "/members"))


@router.post("/orgs/{org_id}/members/{user_id}")
async def update_member(
    org_id: str,
    user_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
):
    path = _org_path(org_id, f"/members/{encode_segment(user_id)}")
    return await _forward_json_body(ctx, request, path, "POST")


@router.delete("/orgs/{org_id}/members/{user_id}")
async def remove_member(
    org_id: str, user_id: str, ctx: RequestContext = Depends(get_request_context)
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/members/{encode_segment(user_id)}"), method="DELETE"
    )


@router.get("/orgs/{org_id}/invites")
async def list_invites(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/invites{ctx.query_suffix()}")
    )


@router.post("/orgs/{org_id}/invites")
async def create_invite(
    org_id: str, request: Request, ctx: RequestContext = Depends(get_request_context)
):
    return await _forward_json_body(ctx, request, _org_path(org_id, "/invites"), "POST")


@router.delete("/orgs/{org_id}/invites/{invite_id}")
async def revoke_invite(
    org_id: str, invite_id: str, ctx: RequestContext = Depends(get_request_context)
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/invites/{encode_segment(invite_id)}"), method="DELETE"
    )


@router.get("/orgs/{org_id}/search")
async def search_org(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/search{ctx.query_suffix()}")
    )


@router.get("/orgs/{org_id}/alerts")
async def list_alerts(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/alerts{ctx.query_suffix()}")
    )


@router.patch("/orgs/{org_id}/alerts/{alert_id}")
async def update_alert(
    org_id: str,
    alert_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
):
    path = _org_path(org_id, f"/alerts/{encode_segment(alert_id)}")
    return await _forward_json_body(ctx, request, path, "PATCH")


@router.post("/orgs/{org_id}/docs/{doc_id}/saved")
async def save_doc(
    org_id: str, doc_id: str, ctx: RequestContext = Depends(get_request_context)
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    return await proxy_backend_request(
        ctx,
        _org_path(org_id, f"/docs/{encode_segment(doc_id)}/saved"),
        method="POST",
        json_body={},
    )


@router.delete("/orgs/{org_id}/docs/{doc_id}/saved")
async def unsave_doc(
    org_id: str, doc_id: str, ctx: RequestContext = Depends(get_request_context)
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/docs/{encode_segment(doc_id)}/saved"), method="DELETE"
    )


@router.get("/orgs/{org_id}/docs/recent")
async def list_recent_docs(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, _org_path(org_id, "/docs/recent"))


@router.get("/orgs/{org_id}/docs/library")
async def get_docs_library(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/docs/library{ctx.query_suffix()}")
    )


@router.get("/orgs/{org_id}/audit")
async def list_audit_events(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/audit{ctx.query_suffix()}")
    )


@router.get("/orgs/{org_id}/runs")
async def list_runs(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, _org_path(org_id, f"/runs{ctx.query_suffix()}"))


@router.get("/orgs/{org_id}/home")
async def get_home(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, _org_path(org_id, "/home"))


@router.get("/orgs/{org_id}/insights")
async def get_team_insights(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/insights{ctx.query_suffix()}")
    )


@router.get("/orgs/{org_id}/insights/me")
async def get_my_insights(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/insights/me{ctx.query_suffix()}")
    )


@router.get("/orgs/{org_id}/teammates")
async def list_teammates(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, _org_path(org_id, "/teammates"))


# --- Tasks ---


@router.get("/orgs/{org_id}/tasks")
async def list_tasks(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(ctx, _org_path(org_id, f"/tasks{ctx.query_suffix()}"))


@router.post("/orgs/{org_id}/tasks")
async def create_task(
    org_id: str, request: Request, ctx: RequestContext = Depends(get_request_context)
):
    return await _forward_json_body(ctx, request, _org_path(org_id, "/tasks"), "POST")


@router.get("/orgs/{org_id}/tasks/assigned-to-me")
async def list_my_assignments(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/tasks/assigned-to-me{ctx.query_suffix()}")
    )


@router.patch("/orgs/{org_id}/tasks/{task_id}")
async def update_task(
    org_id: str,
    task_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
):
    path = _org_path(org_id, f"/tasks/{encode_segment(task_id)}")
    return await _forward_json_body(ctx, request, path, "PATCH")


@router.delete("/orgs/{org_id}/tasks/{task_id}")
async def delete_task(
    org_id: str, task_id: str, ctx: RequestContext = Depends(get_request_context)
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/tasks/{encode_segment(task_id)}"), method="DELETE"
    )


# --- Collections ---


def _collection_path(org_id: str, collection_id: str, suffix: str = "") -> str:
    return _org_path(org_id, f"/collections/{encode_segment(collection_id)}{suffix}")


@router.get("/orgs/{org_id}/collections")
async def list_collections(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/collections{ctx.query_suffix()}")
    )


@router.post("/orgs/{org_id}/collections")
async def create_collection(
    org_id: str, request: Request, ctx: RequestContext = Depends(get_request_context)
):
    return await _forward_json_body(ctx, request, _org_path(org_id, "/collections"), "POST")


@router.patch("/orgs/{org_id}/collections/{collection_id}")
async def update_collection(
    org_id: str,
    collection_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
):
    return await _forward_json_body(
        ctx, request, _collection_path(org_id, collection_id), "PATCH"
    )


@router.delete("/orgs/{org_id}/collections/{collection_id}")
async def delete_collection(
    org_id: str, collection_id: str, ctx: RequestContext = Depends(get_request_context)
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    return await proxy_backend_request(
        ctx, _collection_path(org_id, collection_id), method="DELETE"
    )


@router.get("/orgs/{org_id}/collections/{collection_id}/items")
async def list_collection_items(
    org_id: str, collection_id: str, ctx: RequestContext = Depends(get_request_context)
):
    return await proxy_backend_request(
        ctx, _collection_path(org_id, collection_id, f"/items{ctx.query_suffix()}")
    )


@router.post("/orgs/{org_id}/collections/{collection_id}/items")
async def add_collection_items(
    org_id: str,
    collection_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
):
    return await _forward_json_body(
        ctx, request, _collection_path(org_id, collection_id, "/items"), "POST"
    )


# --- Workflows ---


@router.get("/orgs/{org_id}/workflows")
async def list_workflows(org_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/workflows{ctx.query_suffix()}")
    )


@router.post("/orgs/{org_id}/workflows")
async def create_workflow(
    org_id: str, request: Request, ctx: RequestContext = Depends(get_request_context)
):
    return await _forward_json_body(ctx, request, _org_path(org_id, "/workflows"), "POST")


@router.get("/orgs/{org_id}/workflows/{workflow_id}")
async def get_workflow(
    org_id: str, workflow_id: str, ctx: RequestContext = Depends(get_request_context)
):
    return await proxy_backend_request(ctx, _workflow_path(org_id, workflow_id))


@router.get("/orgs/{org_id}/workflows/{workflow_id}/versions")
async def list_workflow_versions(
    org_id: str, workflow_id: str, ctx: RequestContext = Depends(get_request_context)
):
    return await proxy_backend_request(
        ctx, _workflow_path(org_id, workflow_id, f"/versions{ctx.query_suffix()}")
    )


@router.get("/orgs/{org_id}/workflows/{workflow_id}/versions/{version_id}")
async def get_workflow_version(
    org_id: str,
    workflow_id: str,
    version_id: str,
    ctx: RequestContext = Depends(get_request_context),
):
    return await proxy_backend_request(
        ctx, _workflow_path(org_id, workflow_id, f"/versions/{encode_segment(version_id)}")
    )


@router.get("/orgs/{org_id}/workflows/{workflow_id}/versions/{version_id}/guide-spec")
async def get_guide_spec(
    org_id: str,
    workflow_id: str,
    version_id: str,
    ctx: RequestContext = Depends(get_request_context),
):
    path = _workflow_path(
        org_id, workflow_id, f"/versions/{encode_segment(version_id)}/guide-spec"
    )
    return await proxy_backend_request(ctx, path)


@router.patch("/orgs/{org_id}/workflows/{workflow_id}")
async def update_workflow(
    org_id: str,
    workflow_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
):
    return await _forward_json_body(ctx, request, _workflow_path(org_id, workflow_id), "PATCH")


@router.delete("/orgs/{org_id}/workflows/{workflow_id}")
async def delete_workflow(
    org_id: str, workflow_id: str, ctx: RequestContext = Depends(get_request_context)
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)
    return await proxy_backend_request(
        ctx, _workflow_path(org_id, workflow_id), method="DELETE"
    )


@router.post("/orgs/{org_id}/workflows/{workflow_id}/versions")
async def create_workflow_version(
    org_id: str,
    workflow_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
):
    return await _forward_json_body(
        ctx, request, _workflow_path(org_id, workflow_id, "/versions"), "POST"
    )


@router.get("/orgs/{org_id}/workflow-summary/{workflow_id}")
async def get_workflow_summary(
    org_id: str, workflow_id: str, ctx: RequestContext = Depends(get_request_context)
):
    return await proxy_backend_request(
        ctx, _org_path(org_id, f"/workflow-summary/{encode_segment(workflow_id)}")
    )


@router.get("/orgs/{org_id}/workflows/{workflow_id}/runs")
async def list_workflow_runs(
    org_id: str, workflow_id: str, ctx: RequestContext = Depends(get_request_context)
):
    return await proxy_backend_request(
        ctx, _workflow_path(org_id, workflow_id, f"/runs{ctx.query_suffix()}")
    )


@router.get("/orgs/{org_id}/workflows/{workflow_id}/runs/{run_id}/steps")
async def list_run_steps(
    org_id: str,
    workflow_id: str,
    run_id: str,
    ctx: RequestContext = Depends(get_request_context),
):
    return await proxy_backend_request(
        ctx, _workflow_path(org_id, workflow_id, f"/runs/{encode_segment(run_id)}/steps")
    )


def _version_path(org_id: str, workflow_id: str, version_id: str, suffix: str = "") -> str:
    return _workflow_path(
        org_id, workflow_id, f"/versions/{encode_segment(version_id)}{suffix}"
    )


@router.post("/orgs/{org_id}/workflows/{workflow_id}/versions/{version_id}/exports")
async def create_export(
    org_id: str,
    workflow_id: str,
    version_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
):
    path = _version_path(org_id, workflow_id, version_id, "/exports")
    return await _forward_json_body(ctx, request, path, "POST")


@router.get("/orgs/{org_id}/workflows/{workflow_id}/versions/{version_id}/exports/{export_id}")
async def get_export(
    org_id: str,
    workflow_id: str,
    version_id: str,
    export_id: str,
    ctx: RequestContext = Depends(get_request_context),
):
    path = _version_path(org_id, workflow_id, version_id, f"/exports/{encode_segment(export_id)}")
    return await proxy_backend_request(ctx, path)


@router.get(
    "/orgs/{org_id}/workflows/{workflow_id}/versions/{version_id}/exports/{export_id}/download"
)
async def download_export(
    org_id: str,
    workflow_id: str,
    version_id: str,
    export_id: str,
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Stream a finished export as an attachment.

    The backend answers with a descriptor holding a presigned URL. A failed
    descriptor becomes ``export_download_unavailable`` with the backend's
    status, and a descriptor without a URL the same error with 502.
    """
    path = _version_path(
        org_id, workflow_id, version_id, f"/exports/{encode_segment(export_id)}/download"
    )
    descriptor_response = await proxy_backend_request(ctx, path)
    descriptor = response_json(descriptor_response)
    descriptor = descriptor if isinstance(descriptor, dict) else {}
    download_url = descriptor.get("download_url")
    if not _is_success(descriptor_response) or not download_url:
        status = descriptor_response.status_code
        response = artifact_error(
            status if not _is_success(descriptor_response) else 502,
            "export_download_unavailable",
            descriptor.get("message") or "Export download is unavailable.",
            descriptor_response,
        )
        for cookie in descriptor_response.headers.getlist("set-cookie"):
            response.headers.append("set-cookie", cookie)
        return response

    return await relay_artifact(
        descriptor_response,
        download_url,
        content_type=descriptor.get("content_type"),
        default_content_type="application/octet-stream",
        error="export_fetch_failed",
        message="Unable to fetch export artifact.",
        extra_headers={
            "Content-Disposition": (
                f'attachment; filename="{safe_filename(descriptor.get("filename"))}"'
            )
        },
    )


@router.get("/orgs/{org_id}/workflows/{workflow_id}/versions/{version_id}/guide-redactions")
async def download_guide_redactions(
    org_id: str,
    workflow_id: str,
    version_id: str,
    ctx: RequestContext = Depends(get_request_context),
):
    version_response = await proxy_backend_request(
        ctx, _version_path(org_id, workflow_id, version_id)
    )
    if not _is_success(version_response):
        return version_response

    payload = response_json(version_response)
    download_url = version_section(payload, "guide_redactions").get("download_url")
    if not download_url:
        return artifact_error(
            404, "guide_redactions_unavailable", "Guide redactions are not available."
        )
    return await relay_artifact(
        version_response,
        download_url,
        default_content_type="application/json; charset=utf-8",
        error="guide_redactions_download_failed",
        message="Unable to download guide redactions.",
    )


@router.get(
    "/orgs/{org_id}/workflows/{workflow_id}/versions/{version_id}/media/steps/{step_id}"
)
async def download_step_image(
    org_id: str,
    workflow_id: str,
    version_id: str,
    step_id: str,
    ctx: RequestContext = Depends(get_request_context),
):
    version_response = await proxy_backend_request(
        ctx, _version_path(org_id, workflow_id, version_id)
    )
    if not _is_success(version_response):
        return version_response

    image = find_step_image(response_json(version_response), step_id)
    download_url = (image or {}).get("download_url")
    if not download_url:
        return artifact_error(404, "step_image_unavailable", "Step image is not available.")
    return await relay_artifact(
        version_response,
        download_url,
        default_content_type=(image or {}).get("content_type") or "image/jpeg",
        error="step_image_download_failed",
        message="Unable to download step image.",
    )


@router.get("/workflows/{workflow_id}/resolve")
async def resolve_workflow(
    workflow_id: str, ctx: RequestContext = Depends(get_request_context)
):
    return await proxy_backend_request(
        ctx, f"/v1/workflows/{encode_segment(workflow_id)}/resolve"
    )


# --- Artifacts ---


@router.post("/artifacts/presign")
async def presign_artifacts(
    request: Request, ctx: RequestContext = Depends(get_request_context)
):
    failure = validate_csrf(ctx)
    if failure:
        return csrf_error_response(failure)

    payload = body_or_empty_object(await read_json_body(request))
    if not isinstance(payload, dict):
        payload = {}
    org_id = str(payload.get("org_id") or "").strip()
    if not org_id:
        logger.info("[Proxy] Presign rejected: missing org_id")
        return JSONResponse(
            status_code=400,
            content={"error": "missing_org_id", "message": "org_id is required."},
        )
    artifacts = payload.get("artifacts")
    if not isinstance(artifacts, list) or not artifacts:
        logger.info(f"[Proxy] Presign rejected for org {org_id}: no artifacts")
        return JSONResponse(
            status_code=400,
            content={"error": "missing_artifacts", "message": "artifacts list is required."},
        )

    return await proxy_backend_request(
        ctx,
        "/v1/artifacts/presign",
        method="POST",
        headers={"x-org-id": org_id},
        json_body={"artifacts": artifacts},
    )


# --- Public endpoints (no session required) ---


@router.get("/shares/{share_id}")
async def get_share(share_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await public_backend_request(ctx, f"/v1/shares/{encode_segment(share_id)}")


@router.post("/shares/{share_id}/events")
async def record_share_event(
    share_id: str, request: Request, ctx: RequestContext = Depends(get_request_context)
):
    raw = await request.body()
    return await public_backend_request(
        ctx,
        f"/v1/shares/{encode_segment(share_id)}/events",
        method="POST",
        headers={"content-type": "application/json"},
        body=raw or None,
    )


@router.get("/shares/{share_id}/guide-spec")
async def download_share_guide_spec(
    share_id: str, ctx: RequestContext = Depends(get_request_context)
):
    share_response = await public_backend_request(
        ctx, f"/v1/shares/{encode_segment(share_id)}"
    )
    if not _is_success(share_response):
        return share_response

    download_url = version_section(response_json(share_response), "guide_spec").get(
        "download_url"
    )
    if not download_url:
        return artifact_error(404, "guide_spec_unavailable", "Guide spec is not available.")
    return await relay_artifact(
        share_response,
        download_url,
        default_content_type="application/json; charset=utf-8",
        error="guide_spec_download_failed",
        message="Unable to download guide spec.",
    )


@router.get("/shares/{share_id}/media/steps/{step_id}")
async def download_share_step_image(
    share_id: str,
    step_id: str,
    ctx: RequestContext = Depends(get_request_context),
    variant: Optional[str] = None,
):
    """
    Step image of a shared guide.

    ``variant`` may be ``preview`` or ``full``; anything else means ``auto``,
    which serves the preview first.
    """
    requested = normalize_variant(variant)
    share_response = await public_backend_request(
        ctx, f"/v1/shares/{encode_segment(share_id)}"
    )
    if not _is_success(share_response):
        return share_response

    image = find_step_image(response_json(share_response), step_id)
    resolved = (
        resolve_step_image_variant(
            image, requested, surface="detail" if requested == "full" else "card"
        )
        if image is not None
        else None
    )
    if resolved is None or not resolved.download_url:
        return artifact_error(404, "step_image_unavailable", "Step image is not available.")
    return await relay_artifact(
        share_response,
        resolved.download_url,
        default_content_type=resolved.content_type or "image/jpeg",
        error="step_image_download_failed",
        message="Unable to download step image.",
    )


@router.get("/invite")
async def lookup_invite(
    ctx: RequestContext = Depends(get_request_context),
    org_id: Optional[str] = None,
    invite_id: Optional[str] = None,
):
    org_id = (org_id or "").strip()
    invite_id = (invite_id or "").strip()
    if not org_id or not invite_id:
        return JSONResponse(status_code=400, content={"error": "missing_params"})
    return await public_backend_request(
        ctx, _org_path(org_id, f"/invites/{encode_segment(invite_id)}")
    )
