"""Provider webhook endpoint.

Providers are told to call ``POST /webhook?provider=<code>``. There is no
API key on this route; a provider can be given a shared secret instead
(see ``ProviderConfig.webhook_secret``).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from gateway.api.dependencies import get_admission_gate, get_gateway_request, get_ledger
from gateway.core.logging import get_logger
from gateway.core.responses import render
from gateway.schemas.request import GatewayRequest
from gateway.services.admission import AdmissionGate
from gateway.services.ledger import Ledger
from gateway.services.reconciliation.engine import ReconciliationEngine

logger = get_logger(__name__)

router = APIRouter()


@router.post("/webhook")
def receive_webhook(
    request: Request,
    provider: Optional[str] = Query(None, description="Provider code the push comes from"),
    gateway_request: GatewayRequest = Depends(get_gateway_request),
    gate: AdmissionGate = Depends(get_admission_gate),
    ledger: Ledger = Depends(get_ledger),
) -> JSONResponse:
    """Apply a provider push. Known providers always get 200 "OK"."""
    gateway_request.provider_code = provider
    adapter = gate.resolve(gateway_request)
    logger.info(
        "Webhook received: provider=%s gateway_ref=%s",
        adapter.code,
        gateway_request.gateway_ref,
    )
    engine = ReconciliationEngine(ledger)
    response = engine.handle_webhook(
        gateway_request,
        adapter,
        gateway_request.body,
        headers=request.headers,
    )
    return render(response)
