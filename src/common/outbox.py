"""Outbox pattern implementation."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Integer, String, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base, get_session
from .kafka import KafkaProducer
from .logging import get_logger
from .metrics import OUTBOX_PENDING

logger = get_logger(__name__)

POLL_INTERVAL_SECONDS = 1.0
#: Pause between polls when the outbox is empty or partially drained.


class Outbox(Base):
    """Messages waiting to be published to Kafka."""

    __tablename__ = "outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    topic: Mapped[str] = mapped_column(String, nullable=False)
    key: Mapped[str | None] = mapped_column(String, nullable=True)
    payload_json: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


def _serialize_payload(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)


async def enqueue(
    topic: str,
    key: str | None,
    payload: Any,
    *,
    session: AsyncSession | None = None,
) -> None:
    """Add a message to the outbox.

    With ``session`` the row joins the caller's transaction and is committed
    (or rolled back) together with it. Without one a dedicated session is
    opened and committed immediately.
    """

    row = Outbox(topic=topic, key=key, payload_json=_serialize_payload(payload))
    if session is not None:
        session.add(row)
        return
    async with get_session() as own_session:
        own_session.add(row)
        await own_session.commit()


async def drain_outbox(
    producer: KafkaProducer,
    batch_size: int = 100,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    service: str = "app",
) -> None:
    """Background task publishing outbox messages to Kafka."""

    stmt = select(Outbox).where(Outbox.sent_at.is_(None)).order_by(Outbox.id)

    while True:
        async with get_session() as session:
            rows = list(await session.scalars(stmt.limit(batch_size)))
            OUTBOX_PENDING.labels(service).set(len(rows))
            if not rows:
                await asyncio.sleep(poll_interval)
                continue
            for row in rows:
                try:
                    # Payload is already serialized JSON, sent as-is.
                    await producer.send(row.topic, row.key, row.payload_json)
                    row.sent_at = datetime.now(timezone.utc)
                except Exception:
                    row.attempts += 1
                    logger.exception(
                        "outbox.publish_failed",
                        outbox_id=row.id,
                        topic=row.topic,
                        attempts=row.attempts,
                    )
            await session.commit()
            if len(rows) < batch_size:
                await asyncio.sleep(poll_interval)
