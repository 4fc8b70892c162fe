"""Pydantic schemas for ledger transactions."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TransactionResponse(BaseModel):
    """A ledger record as returned by ``GET /transaction``."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    gateway_ref: str
    py_ref: str
    provider: str
    type: str
    status: str = Field(
        ...,
        description="PENDING | COMPLETED | FAILED | CANCELLED | LOGGED",
    )
    completed_by: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    msisdn: Optional[str] = None
    provider_ref: Optional[str] = None
    financial_transaction_id: Optional[str] = None
    message: Optional[str] = None
    metadata_json: Optional[dict[str, Any]] = Field(
        None,
        serialization_alias="metadata",
        description="Raw upstream payloads merged over the transaction's life",
    )
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
