"""Outbound SMS endpoint. Sends are not recorded in the ledger."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from gateway.api.dependencies import authenticate_request, get_admission_gate
from gateway.core.responses import render
from gateway.schemas.request import GatewayRequest
from gateway.services.admission import AdmissionGate
from gateway.services.providers.base import Capability, invoke

router = APIRouter()


@router.post("/sms/send")
async def send_sms(
    gateway_request: GatewayRequest = Depends(authenticate_request),
    gate: AdmissionGate = Depends(get_admission_gate),
) -> JSONResponse:
    """Send ``sms_text`` from ``sms_from`` to ``sms_to`` (list or comma separated)."""
    adapter = await run_in_threadpool(gate.resolve, gateway_request, require_reference=True)
    return render(await invoke(adapter, Capability.SEND_SMS, gateway_request))
