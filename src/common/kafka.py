"""Kafka producer built around aiokafka."""

from __future__ import annotations

import json
from typing import Any, Final

from aiokafka import AIOKafkaProducer
from opentelemetry import trace


class KafkaProducer:
    """Kafka producer with compact JSON serialization."""

    __slots__ = ("_producer", "_started")

    _tracer = trace.get_tracer(__name__)
    _empty_bytes: Final[bytes] = b""

    def __init__(self, brokers: str) -> None:
        # One client per process, the connection is reused between sends.
        self._producer = AIOKafkaProducer(
            bootstrap_servers=[b.strip() for b in brokers.split(",") if b.strip()],
            value_serializer=self._serialize,
            key_serializer=self._serialize_key,
        )
        self._started = False

    @staticmethod
    def _serialize(value: Any) -> bytes:
        # Outbox rows already hold JSON text, so strings and bytes go out as-is.
        if value is None:
            return b"null"
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode("utf-8")
        return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode(
            "utf-8"
        )

    @classmethod
    def _serialize_key(cls, value: Any) -> bytes:
        if value is None:
            return cls._empty_bytes
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        return str(value).encode("utf-8")

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the aiokafka client once."""

        if self._started:
            return
        await self._producer.start()
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        await self._producer.stop()
        self._started = False

    async def send(self, topic: str, key: Any, value: Any) -> None:
        """Send a message and wait for the broker acknowledgement."""

        if not self._started:
            raise RuntimeError("KafkaProducer must be started before sending messages")
        with self._tracer.start_as_current_span(f"event.produce:{topic}"):
            await self._producer.send_and_wait(topic, value=value, key=key)

    async def __aenter__(self) -> "KafkaProducer":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()
