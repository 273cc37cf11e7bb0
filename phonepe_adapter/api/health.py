"""Liveness endpoint."""

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    mode: str
    mock_gateway: bool


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    settings = request.app.state.settings
    return HealthResponse(status="ok", mode=settings.mode, mock_gateway=settings.use_mock_gateway)
