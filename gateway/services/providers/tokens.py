"""Access token acquisition for providers that front their API with OAuth.

Tokens are fetched fresh for every operation and never cached: each
call to ``AccessTokenManager.acquire`` is a round trip to the provider's
auth endpoint. The result is an envelope like every other operation, so
an adapter can hand a failed acquisition straight back to its caller.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

import httpx

from gateway.core.constants import ErrorMessage, StatusCode, TransactionType
from gateway.core.logging import get_logger
from gateway.core.responses import GatewayResponse, create_response
from gateway.schemas.provider import ProviderConfig

logger = get_logger(__name__)

# Mobile-money products are split into collection and disbursement APIs,
# each with its own token endpoint and subscription key.
PRODUCT_BY_TYPE: dict[TransactionType, str] = {
    TransactionType.COLLECTION: "collection",
    TransactionType.VALIDATION: "collection",
    TransactionType.PURCHASE: "collection",
    TransactionType.PAYOUT: "disbursement",
}

SMS_TOKEN_TTL_SECONDS = 60


def strip_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


def product_url(config: ProviderConfig, transaction_type: TransactionType) -> str:
    """Base URL of the collection or disbursement product."""
    return f"{strip_trailing_slash(config.server_url or '')}/{PRODUCT_BY_TYPE[transaction_type]}"


def subscription_key(config: ProviderConfig, transaction_type: TransactionType) -> str:
    if PRODUCT_BY_TYPE[transaction_type] == "disbursement":
        return config.payout_subscription_key or ""
    return config.collection_subscription_key or ""


@dataclass(frozen=True)
class AccessToken:
    """A short-lived bearer token for one (provider, transaction type)."""

    provider: str
    transaction_type: TransactionType
    access_token: str
    token_type: str
    expires_in: int

    @property
    def authorization(self) -> str:
        return f"Bearer {self.access_token}"

    @classmethod
    def from_response(
        cls,
        provider: str,
        transaction_type: TransactionType,
        response: GatewayResponse,
    ) -> "AccessToken":
        data = response.data or {}
        return cls(
            provider=provider,
            transaction_type=transaction_type,
            access_token=str(data["access_token"]),
            token_type=str(data.get("token_type", "Bearer")),
            expires_in=int(data.get("expires_in") or 0),
        )


class AccessTokenManager:
    """Fetches bearer tokens on demand. Holds no per-token state."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http

    async def acquire(
        self,
        config: ProviderConfig,
        transaction_type: TransactionType = TransactionType.COLLECTION,
    ) -> GatewayResponse:
        """Request a fresh token scoped to *transaction_type*.

        Returns:
            200 with ``{access_token, token_type, expires_in}``, 422 when the
            provider answered without token details, or 500 when the auth
            endpoint could not be reached or returned garbage.
        """
        try:
            if config.auth_scheme == "client_secret":
                payload = await self._request_client_secret(config)
                payload = _normalize_client_secret_payload(payload)
            else:
                payload = await self._request_basic(config, transaction_type)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(
                "Token request failed: provider=%s type=%s error=%s",
                config.code,
                transaction_type.value,
                exc,
            )
            return create_response(
                StatusCode.INTERNAL_SERVER_ERROR,
                {"error": str(exc)},
                ErrorMessage.TOKEN_CREATION_FAILED,
            )

        if (
            isinstance(payload, dict)
            and payload.get("access_token")
            and payload.get("token_type")
            and payload.get("expires_in")
        ):
            logger.debug(
                "Token acquired: provider=%s type=%s expires_in=%s",
                config.code,
                transaction_type.value,
                payload.get("expires_in"),
            )
            return create_response(StatusCode.OK, payload)

        logger.warning(
            "Token response without details: provider=%s type=%s",
            config.code,
            transaction_type.value,
        )
        return create_response(
            StatusCode.UNPROCESSABLE_ENTITY,
            payload,
            ErrorMessage.TOKEN_DETAILS_NOT_FOUND,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _request_basic(
        self,
        config: ProviderConfig,
        transaction_type: TransactionType,
    ) -> Any:
        """Mobile-money style: Basic api user/key plus subscription key."""
        credentials = f"{config.api_user}:{config.api_key}".encode("utf-8")
        response = await self.http.post(
            f"{product_url(config, transaction_type)}/token/",
            json={},
            headers={
                "Content-Type": "application/json",
                "Authorization": "Basic " + base64.b64encode(credentials).decode("ascii"),
                "Ocp-Apim-Subscription-Key": subscription_key(config, transaction_type),
            },
        )
        return response.json()

    async def _request_client_secret(self, config: ProviderConfig) -> Any:
        """SMS style: client id and secret on the auth URL query string."""
        response = await self.http.post(
            strip_trailing_slash(config.auth_url or ""),
            params={
                "client_id": config.client_id,
                "secret": config.secret,
                "expires_in": SMS_TOKEN_TTL_SECONDS,
            },
            json={},
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )
        return response.json()


def _normalize_client_secret_payload(payload: Any) -> Any:
    """Map ``{jwt|token, expires_in}`` onto the access-token field names."""
    if not isinstance(payload, dict):
        return payload
    token = payload.get("jwt") or payload.get("token")
    if not token:
        return payload
    return {
        "access_token": token,
        "token_type": payload.get("token_type") or "Bearer",
        "expires_in": payload.get("expires_in"),
    }
