"""Pydantic schema for one entry of the provider configuration file."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProviderConfig(BaseModel):
    """Static credentials and URLs for one upstream payment network.

    Only the fields an adapter needs must be present; everything else
    stays ``None``. ``adapter`` picks the implementation from the registry
    and defaults to the provider code.
    """

    model_config = ConfigDict(extra="ignore")

    code: str
    name: str
    adapter: Optional[str] = None
    type: list[str] = Field(
        default_factory=list,
        description="Capabilities advertised to callers, e.g. collection | payout",
    )
    auth_scheme: Literal["basic", "client_secret"] = Field(
        "basic",
        description="basic: api user/key at <product>/token/; "
        "client_secret: client id/secret on auth_url",
    )
    server_url: Optional[str] = None
    provider_env: Optional[str] = Field(
        None,
        description="Target environment tag sent upstream (sandbox, mtnuganda, ...)",
    )

    # Mobile-money credentials
    api_user: Optional[str] = None
    api_key: Optional[str] = None
    collection_subscription_key: Optional[str] = None
    payout_subscription_key: Optional[str] = None
    provider_callback_url: Optional[str] = None
    request_callback: bool = False
    request_payout_callback: bool = False

    # Card processor
    secret_key: Optional[str] = None
    checkout_title: str = "Payie"
    checkout_description: str = "Your Swift Payments"
    checkout_logo: Optional[str] = None

    # SMS
    auth_url: Optional[str] = None
    send_sms_url: Optional[str] = None
    client_id: Optional[str] = None
    secret: Optional[str] = None
    sender_id: str = "Payie"

    # Inbound webhook hardening (off when no secret is configured)
    webhook_secret: Optional[str] = None
    webhook_signature_header: str = "verif-hash"

    @model_validator(mode="after")
    def _default_adapter(self) -> "ProviderConfig":
        if not self.adapter:
            self.adapter = self.code
        return self

    def describe(self) -> dict:
        """Public view of the provider, without credentials."""
        return {"name": self.name, "code": self.code, "type": self.type}
