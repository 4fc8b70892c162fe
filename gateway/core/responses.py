"""The normalized ``{code, success, message, data}`` envelope.

Every adapter capability, the admission gate and the reconciliation
engine answer with a ``GatewayResponse``; the HTTP layer only renders it.
"""

from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gateway.core.constants import StatusCode


class GatewayResponse(BaseModel):
    """Response envelope. ``success`` is always ``code < 300``."""

    code: int
    success: bool
    message: str
    data: Any = None


def status_message(code: int, extra_info: str = "") -> str:
    """Prefix *extra_info* with the canned message for *code*."""
    if code == StatusCode.OK:
        prefix = "Request completed successfully."
    elif code == StatusCode.SERVICE_UNAVAILABLE:
        prefix = "Service is unavailable."
    elif code == StatusCode.BAD_REQUEST:
        prefix = "Invalid request."
    elif code in (StatusCode.GATEWAY_TIMEOUT, StatusCode.INTERNAL_SERVER_ERROR):
        prefix = "Encountered an unexpected condition."
    elif code in (StatusCode.UNPROCESSABLE_ENTITY, StatusCode.NOT_FOUND):
        prefix = "Request Failed."
    else:
        prefix = f"Unknown status code: {code}."
    return f"{prefix} {extra_info}".strip()


def create_response(
    code: int,
    data: Any = None,
    extra_info: str = "",
) -> GatewayResponse:
    """Build an envelope for *code*, optionally carrying *data*."""
    code = int(code)
    return GatewayResponse(
        code=code,
        success=code < 300,
        message=status_message(code, extra_info),
        data=data,
    )


def render(response: GatewayResponse) -> JSONResponse:
    """Serialize an envelope with the HTTP status equal to its code."""
    return JSONResponse(
        status_code=response.code,
        content=jsonable_encoder(response),
    )
