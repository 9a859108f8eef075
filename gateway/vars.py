import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "dashboard-gateway")


def _parse_bool(raw, default: bool) -> bool:
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    return default


def _parse_allowlist(raw: str) -> frozenset:
    return frozenset(item.strip() for item in raw.split(",") if item.strip())


GATEWAY_STAGE = (os.getenv("GATEWAY_STAGE", "dev").strip().lower()) or "dev"
IS_PROD = GATEWAY_STAGE == "prod"

BACKEND_API_URL = (
    os.getenv("BACKEND_API_URL", "") or os.getenv("BACKEND_BASE_URL", "")
).strip().rstrip("/")

# Session credential cookies are issued by the sign-in flow; this service only reads and clears them
ACCESS_COOKIE_NAME = os.getenv("ACCESS_COOKIE_NAME", "gw_access_token")
ID_COOKIE_NAME = os.getenv("ID_COOKIE_NAME", "gw_id_token")
REFRESH_COOKIE_NAME = os.getenv("REFRESH_COOKIE_NAME", "gw_refresh_token")
EXPIRES_AT_COOKIE_NAME = os.getenv("EXPIRES_AT_COOKIE_NAME", "gw_access_expires_at")
SESSION_EXPIRY_SKEW_SECONDS = int(os.getenv("SESSION_EXPIRY_SKEW_SECONDS", "30"))

CSRF_COOKIE_NAME = os.getenv("CSRF_COOKIE_NAME", "gw_csrf")
CSRF_HEADER_NAME = os.getenv("CSRF_HEADER_NAME", "x-csrf-token").lower()
CSRF_FORM_FIELD = os.getenv("CSRF_FORM_FIELD", "csrf_token")
CSRF_MAX_AGE_SECONDS = int(os.getenv("CSRF_MAX_AGE_SECONDS", str(60 * 60 * 8)))
CSRF_ORIGIN_ALLOWLIST = _parse_allowlist(os.getenv("CSRF_ORIGIN_ALLOWLIST", ""))
CSRF_REQUIRE_ORIGIN = _parse_bool(os.getenv("CSRF_REQUIRE_ORIGIN"), IS_PROD)

REQUEST_ID_HEADER = os.getenv("REQUEST_ID_HEADER", "x-request-id").lower()

BACKEND_TIMEOUT_SECONDS = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "10"))
# Must stay above BACKEND_TIMEOUT_SECONDS so a sibling's own 504 is observed first
INTERNAL_FETCH_TIMEOUT_SECONDS = float(os.getenv("INTERNAL_FETCH_TIMEOUT_SECONDS", "15"))
GUIDE_DETAIL_TIMEOUT_SECONDS = float(os.getenv("GUIDE_DETAIL_TIMEOUT_SECONDS", "1.5"))
WORKFLOW_SUMMARY_TIMEOUT_SECONDS = float(os.getenv("WORKFLOW_SUMMARY_TIMEOUT_SECONDS", "1.2"))

INTERNAL_CALLS_IN_PROCESS = _parse_bool(os.getenv("INTERNAL_CALLS_IN_PROCESS"), True)
INTERNAL_API_BASE_URL = os.getenv("INTERNAL_API_BASE_URL", "").strip().rstrip("/")

SIGNIN_PATH = os.getenv("SIGNIN_PATH", "/signin")
DEFAULT_REDIRECT_PATH = os.getenv("DEFAULT_REDIRECT_PATH", "/dashboard")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
