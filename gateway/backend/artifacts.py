"""
Artifact downloads behind presigned URLs.

Some routes first ask the backend for a descriptor (a workflow version, a share
or an export) and then fetch the file it points to. The file is relayed to the
browser with ``no-store`` and the backend's request id; the presigned URL
itself is never exposed.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from fastapi import Response
from fastapi.responses import JSONResponse
from opentelemetry import trace

from gateway.utils.exception_logging import log_exception_with_details
from gateway.utils.traced_requests import traced_request
from gateway.vars import BACKEND_TIMEOUT_SECONDS, REQUEST_ID_HEADER

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

STEP_IMAGE_VARIANTS = ("auto", "preview", "full")


@dataclass(frozen=True)
class ResolvedStepImage:
    variant: Optional[str]
    download_url: Optional[str]
    content_type: Optional[str]


def response_json(response: Response) -> Any:
    """Decoded JSON body of a relayed response, or None."""
    body = getattr(response, "body", b"")
    if not body:
        return None
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _non_empty(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def version_section(payload: Any, section: str) -> Dict[str, Any]:
    """``payload["version"][section]`` when both levels are objects, else ``{}``."""
    return _as_dict(_as_dict(_as_dict(payload).get("version")).get(section))


def find_step_image(payload: Any, step_id: str) -> Optional[Dict[str, Any]]:
    images = version_section(payload, "guide_media").get("step_images")
    if not isinstance(images, list):
        return None
    for image in images:
        if isinstance(image, dict) and image.get("step_id") == step_id:
            return image
    return None


def normalize_variant(value: Optional[str]) -> str:
    value = (value or "").strip().lower()
    return value if value in STEP_IMAGE_VARIANTS else "auto"


def resolve_step_image_variant(
    image: Dict[str, Any], requested: str = "auto", surface: str = "card"
) -> ResolvedStepImage:
    """
    Pick the download URL for a step image.

    An explicit ``preview`` or ``full`` request is tried first and the other
    variant second; ``auto`` prefers ``full`` on the detail surface and
    ``preview`` elsewhere. Images without usable variants fall back to their
    own ``download_url``.
    """
    if requested == "preview":
        order = ("preview", "full")
    elif requested == "full":
        order = ("full", "preview")
    else:
        order = ("full", "preview") if surface == "detail" else ("preview", "full")

    variants = _as_dict(image.get("variants"))
    fallback: Optional[Dict[str, Any]] = None
    for name in order:
        descriptor = variants.get(name)
        if not isinstance(descriptor, dict):
            continue
        if fallback is None:
            fallback = descriptor
        url = _non_empty(descriptor.get("download_url"))
        if url:
            return ResolvedStepImage(
                variant=name,
                download_url=url,
                content_type=_non_empty(descriptor.get("content_type"))
                or _non_empty(image.get("content_type")),
            )

    content_type = _non_empty(_as_dict(fallback).get("content_type")) or _non_empty(
        image.get("content_type")
    )
    legacy_url = _non_empty(image.get("download_url"))
    return ResolvedStepImage(
        variant="legacy" if legacy_url else None,
        download_url=legacy_url,
        content_type=content_type,
    )


def safe_filename(value: Optional[str], default: str = "workflow-guide-export") -> str:
    value = (value or "").strip()
    if not value:
        return default
    return re.sub(r"[^\w.\-]+", "-", value)


def artifact_error(
    status: int, error: str, message: str, source: Optional[Response] = None
) -> JSONResponse:
    response = JSONResponse(
        status_code=status, content={"error": error, "message": message}
    )
    request_id = source.headers.get(REQUEST_ID_HEADER) if source is not None else None
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def fetch_artifact(download_url: str) -> Optional[httpx.Response]:
    """GET a presigned URL. None when the call fails or answers with a non-2xx status."""
    with traced_request(
        tracer,
        operation="fetch_artifact",
        target="presigned",
        method="GET",
        start_message="[Artifact] Fetching presigned download",
    ) as span:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(BACKEND_TIMEOUT_SECONDS), follow_redirects=True
            ) as client:
                response = await client.get(download_url)
        except httpx.HTTPError as e:
            span.set_attribute("gateway.error", "network_error")
            log_exception_with_details(logger, "[Artifact]", e, target="presigned")
            return None
        span.set_attribute("gateway.status_code", response.status_code)
    if not response.is_success:
        logger.warning(f"[Artifact] Presigned download answered {response.status_code}")
        return None
    return response


async def relay_artifact(
    source: Response,
    download_url: str,
    *,
    default_content_type: str,
    content_type: Optional[str] = None,
    error: str,
    message: str,
    extra_headers: Optional[Dict[str, str]] = None,
) -> Response:
    """
    Fetch ``download_url`` and relay its body.

    ``source`` is the backend response that carried the URL; its request id is
    copied onto both the success and the 502 failure response. ``content_type``
    overrides the artifact's own header; ``default_content_type`` only fills in
    when neither is known.
    """
    artifact = await fetch_artifact(download_url)
    if artifact is None:
        return artifact_error(502, error, message, source)

    response = Response(
        content=artifact.content,
        status_code=200,
        media_type=content_type
        or artifact.headers.get("content-type")
        or default_content_type,
    )
    response.headers["Cache-Control"] = "no-store"
    for name, value in (extra_headers or {}).items():
        response.headers[name] = value
    request_id = source.headers.get(REQUEST_ID_HEADER)
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id
    return response
