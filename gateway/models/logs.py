"""Insert-only audit tables: rejected requests and adapter messages."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, JSON, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from gateway.core.database import Base


class RequestLog(Base):
    """A request the gateway turned away, with the envelope it answered."""

    __tablename__ = "request_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    gateway_ref: Mapped[Optional[str]] = mapped_column(
        String(64),
        index=True,
    )
    provider: Mapped[Optional[str]] = mapped_column(String(50))
    url: Mapped[Optional[str]] = mapped_column(String(500))
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text)
    request_body: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    response_body: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<RequestLog(gateway_ref={self.gateway_ref!r}, level={self.level!r})>"


class MessageLog(Base):
    """Free-text failure note written by an adapter or the engine."""

    __tablename__ = "message_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    gateway_ref: Mapped[Optional[str]] = mapped_column(
        String(64),
        index=True,
    )
    provider: Mapped[Optional[str]] = mapped_column(String(50))
    url: Mapped[Optional[str]] = mapped_column(String(500))
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<MessageLog(gateway_ref={self.gateway_ref!r}, level={self.level!r})>"
