"""Service index and provider listing."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from gateway.api.dependencies import authenticate_request, get_context
from gateway.core.constants import StatusCode
from gateway.core.context import GatewayContext
from gateway.core.responses import create_response, render
from gateway.schemas.request import GatewayRequest

router = APIRouter()


@router.get("/")
def index() -> JSONResponse:
    return render(
        create_response(
            StatusCode.OK,
            {"service": "payie-gateway"},
            "Welcome to the Payie payment gateway.",
        )
    )


@router.get("/providers")
def list_providers(
    gateway_request: GatewayRequest = Depends(authenticate_request),
    context: GatewayContext = Depends(get_context),
) -> JSONResponse:
    """Configured providers with their advertised types and capabilities."""
    return render(create_response(StatusCode.OK, context.registry.describe()))
