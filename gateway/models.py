from pydantic import BaseModel


class CsrfTokenResponse(BaseModel):
    csrf_token: str


class HealthResponse(BaseModel):
    status: str
    service: str
