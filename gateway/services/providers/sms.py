"""Bulk SMS adapter. Supports ``send_sms`` only."""

from __future__ import annotations

from typing import Any

import httpx

from gateway.core.constants import StatusCode, TransactionType
from gateway.core.logging import get_logger
from gateway.core.responses import GatewayResponse, create_response
from gateway.schemas.request import GatewayRequest
from gateway.services.providers.base import ProviderAdapter
from gateway.services.providers.tokens import AccessToken, strip_trailing_slash

logger = get_logger(__name__)

DEFAULT_SEND_URL = "https://api.sms.to/sms/send"
SMS_MESSAGE_LENGTH = 160


def _recipients(raw: Any) -> list[str]:
    if isinstance(raw, (list, tuple)):
        return [str(r).strip() for r in raw if str(r).strip()]
    if isinstance(raw, str):
        return [r.strip() for r in raw.split(",") if r.strip()]
    return []


class SmsAdapter(ProviderAdapter):
    async def send_sms(self, request: GatewayRequest) -> GatewayResponse:
        ids = request.correlation_ids()
        details = request.details
        sender = details.get("sms_from") or self.config.sender_id
        recipients = _recipients(details.get("sms_to"))
        message = details.get("sms_text")

        if not sender:
            return create_response(StatusCode.BAD_REQUEST, ids, "Missing Sender ID 'sms_from'.")
        if not recipients:
            return create_response(StatusCode.BAD_REQUEST, ids, "Missing Recipient(s) 'sms_to'.")
        if not message:
            return create_response(StatusCode.BAD_REQUEST, ids, "Missing Message 'sms_text'.")
        if len(message) > SMS_MESSAGE_LENGTH:
            return create_response(
                StatusCode.BAD_REQUEST,
                ids,
                f"Text Message should be at most {SMS_MESSAGE_LENGTH} characters",
            )

        token_response = await self.tokens.acquire(self.config)
        if not token_response.success:
            return token_response
        token = AccessToken.from_response(self.code, TransactionType.COLLECTION, token_response)

        try:
            response = await self.http.post(
                strip_trailing_slash(self.config.send_sms_url or DEFAULT_SEND_URL),
                params={
                    "to": ",".join(recipients),
                    "sender_id": sender,
                    "message": message,
                },
                json={},
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "Authorization": token.authorization,
                },
            )
            payload = response.json() if response.content else {}
        except (httpx.HTTPError, ValueError) as exc:
            error = str(exc) or type(exc).__name__
            await self.log_failure(request, error)
            return create_response(StatusCode.INTERNAL_SERVER_ERROR, ids, error)

        if isinstance(payload, dict) and payload.get("success"):
            logger.info(
                "SMS submitted: gateway_ref=%s recipients=%d",
                request.gateway_ref,
                len(recipients),
            )
            return create_response(StatusCode.OK, {**payload, **ids})
        return create_response(
            StatusCode.UNPROCESSABLE_ENTITY,
            payload,
            "SMS Sending Failed",
        )
