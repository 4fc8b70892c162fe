"""Transaction ledger model: one row per gateway transaction."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, Index, JSON, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from gateway.core.database import Base


class Transaction(Base):
    """Durable record of a transaction and its lifecycle.

    Created PENDING by a provider adapter before the outbound call, then
    moved to a terminal status by the adapter itself, a webhook push or a
    status poll. ``completed_by`` records which of the three did it.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    gateway_ref: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )
    py_ref: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
        comment="Caller-supplied idempotency key",
    )
    provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="COLLECTION | PAYOUT | PURCHASE | VALIDATION",
    )
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="PENDING",
        comment="PENDING | COMPLETED | FAILED | CANCELLED | LOGGED | upstream value",
    )
    completed_by: Mapped[Optional[str]] = mapped_column(
        String(20),
        comment="REQUEST | WEBHOOK | TRANS_CHECK",
    )
    amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    currency: Mapped[Optional[str]] = mapped_column(
        String(3),
    )
    msisdn: Mapped[Optional[str]] = mapped_column(
        String(32),
        comment="Counterparty identifier",
    )
    provider_ref: Mapped[Optional[str]] = mapped_column(
        String(100),
        index=True,
        comment="Reference the upstream knows this transaction by",
    )
    financial_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100),
    )
    message: Mapped[Optional[str]] = mapped_column(
        Text,
    )
    request_body: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )
    response_body: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )
    metadata_json: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_transactions_provider_status", "provider", "status"),
    )

    def summary(self) -> dict[str, Any]:
        """Fields echoed back to callers in response envelopes."""
        return {
            "status": self.status,
            "gateway_ref": self.gateway_ref,
            "py_ref": self.py_ref,
        }

    def __repr__(self) -> str:
        return (
            f"<Transaction(gateway_ref={self.gateway_ref!r}, "
            f"py_ref={self.py_ref!r}, status={self.status!r})>"
        )
