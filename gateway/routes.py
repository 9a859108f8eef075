from fastapi import APIRouter

from gateway.auth.routes import router as auth_router
from gateway.bootstrap.routes import router as bootstrap_router
from gateway.models import HealthResponse
from gateway.proxy.routes import router as proxy_router
from gateway.vars import SERVICE_NAME

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", service=SERVICE_NAME)


router.include_router(auth_router)
# Bootstrap paths such as /api/orgs/{org_id}/members/bootstrap would otherwise
# be captured by the proxy's /api/orgs/{org_id}/members/{user_id}
router.include_router(bootstrap_router)
router.include_router(proxy_router)
