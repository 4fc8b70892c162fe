"""The normalized inbound request handed to the gateway core."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

# Caller fields copied into ``details``. Anything else in the body is ignored.
DETAIL_FIELDS: tuple[str, ...] = (
    "py_ref",
    "msisdn",
    "amount",
    "currency",
    "description",
    "type",
    "redirect_url",
    "client_name",
    "client_email",
    "sms_from",
    "sms_to",
    "sms_text",
    "transaction_id",
    "reference",
    "status",
    "data",
)


def generate_gateway_ref(prefix: str = "payie-") -> str:
    """Return a fresh correlation id for one inbound request."""
    return f"{prefix}{uuid.uuid4().hex}"


def generate_order_id() -> str:
    """Return an order id for providers that want a caller-side reference."""
    return str(uuid.uuid4().int)[:16]


def extract_details(
    body: Optional[Mapping[str, Any]],
    query: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Pick the known caller fields out of the body and query string.

    Body values win over query values. Null values are dropped so
    downstream presence checks only need ``details.get(...)``.
    """
    body = body or {}
    query = query or {}
    details: dict[str, Any] = {}
    for name in DETAIL_FIELDS:
        value = body.get(name)
        if value is None:
            value = query.get(name)
        if value is not None:
            details[name] = value
    return details


@dataclass
class GatewayRequest:
    """One inbound request after the router has done its part.

    Attributes:
        gateway_ref: Correlation id generated once on entry, threaded
            through every downstream call and log line.
        details: Caller-supplied fields (see ``DETAIL_FIELDS``).
        provider_code: Value of the provider-selector header, if any.
        body: The raw JSON body, kept for the audit log.
        url: Path and query of the inbound call.
        ip_address: Client address as seen by the router.
    """

    gateway_ref: str
    details: dict[str, Any] = field(default_factory=dict)
    provider_code: Optional[str] = None
    body: dict[str, Any] = field(default_factory=dict)
    url: str = ""
    ip_address: Optional[str] = None

    @property
    def py_ref(self) -> Optional[str]:
        return self.details.get("py_ref")

    def correlation_ids(self) -> dict[str, Any]:
        return {"gateway_ref": self.gateway_ref, "py_ref": self.py_ref}
