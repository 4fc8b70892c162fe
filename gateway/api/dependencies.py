"""FastAPI dependencies shared by the gateway routes."""

from __future__ import annotations

import hmac

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from gateway.core.constants import ErrorMessage, LogLevel
from gateway.core.context import GatewayContext
from gateway.core.database import get_db
from gateway.core.errors import RequestValidationError, Unauthorized
from gateway.core.logging import get_logger
from gateway.schemas.request import GatewayRequest, extract_details, generate_gateway_ref
from gateway.services.admission import AdmissionGate
from gateway.services.ledger import Ledger

logger = get_logger(__name__)

API_KEY_HEADER = "api-key"


def get_context(request: Request) -> GatewayContext:
    return request.app.state.context


def get_ledger(db: Session = Depends(get_db)) -> Ledger:
    return Ledger(db)


def get_admission_gate(
    context: GatewayContext = Depends(get_context),
    ledger: Ledger = Depends(get_ledger),
) -> AdmissionGate:
    return AdmissionGate(context, ledger)


async def get_gateway_request(
    request: Request,
    context: GatewayContext = Depends(get_context),
) -> GatewayRequest:
    """Normalize the inbound call into a ``GatewayRequest``.

    POST bodies must be JSON objects. A fresh ``gateway_ref`` is generated
    here and nowhere else.
    """
    gateway_ref = generate_gateway_ref(context.settings.gateway_ref_prefix)
    body: dict = {}
    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type.lower():
            raise RequestValidationError(
                ErrorMessage.UNSUPPORTED_CONTENT_TYPE, {"gateway_ref": gateway_ref}
            )
        try:
            body = await request.json()
        except ValueError:
            raise RequestValidationError(
                ErrorMessage.UNSUPPORTED_CONTENT_TYPE, {"gateway_ref": gateway_ref}
            )
        if not isinstance(body, dict):
            raise RequestValidationError(
                ErrorMessage.UNSUPPORTED_CONTENT_TYPE, {"gateway_ref": gateway_ref}
            )

    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"

    return GatewayRequest(
        gateway_ref=gateway_ref,
        details=extract_details(body, request.query_params),
        provider_code=request.headers.get(context.settings.provider_header),
        body=body,
        url=url,
        ip_address=request.client.host if request.client else None,
    )


def authenticate_request(
    request: Request,
    gateway_request: GatewayRequest = Depends(get_gateway_request),
    context: GatewayContext = Depends(get_context),
    ledger: Ledger = Depends(get_ledger),
) -> GatewayRequest:
    """Check the API key and client address when a key is configured.

    The IP allow-list only applies when it is non-empty.
    """
    settings = context.settings
    if not settings.app_api_key:
        return gateway_request

    supplied = request.headers.get(API_KEY_HEADER) or ""
    key_ok = hmac.compare_digest(supplied.encode("utf-8"), settings.app_api_key.encode("utf-8"))
    ip_ok = not settings.app_authorized_ips or gateway_request.ip_address in settings.app_authorized_ips
    if key_ok and ip_ok:
        return gateway_request

    error = Unauthorized(ErrorMessage.UNAUTHORIZED_ACCESS, {"gateway_ref": gateway_request.gateway_ref})
    logger.critical(
        "Unauthorized API access: gateway_ref=%s ip=%s key_ok=%s",
        gateway_request.gateway_ref,
        gateway_request.ip_address,
        key_ok,
    )
    ledger.log_request(gateway_request, LogLevel.CRITICAL, error.message, error.to_response())
    raise error
