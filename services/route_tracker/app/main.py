"""Entrypoint for the route tracker service."""

from __future__ import annotations

import asyncio

from fastapi import FastAPI

from src.common import db
from src.common.kafka import KafkaProducer
from src.common.logging import get_logger, setup_logging
from src.common.metrics import JOB_DURATION, setup_metrics
from src.common.outbox import drain_outbox
from src.common.settings import settings as common_settings
from src.common.telemetry import setup_otel

from . import deps, errors
from .api import router

logger = get_logger(__name__)

app = FastAPI(title=deps.SERVICE_NAME)
setup_metrics(app, deps.SERVICE_NAME)
setup_otel(app, deps.SERVICE_NAME)
errors.install_error_handlers(app)

_producer: KafkaProducer | None = None
_drain_task: asyncio.Task | None = None


@app.on_event("startup")
async def on_startup() -> None:
    global _producer, _drain_task
    setup_logging(
        common_settings.log_level,
        service=deps.SERVICE_NAME,
        json_logs=common_settings.log_json,
    )
    settings = deps.get_settings()
    if settings.run_migrations:
        await asyncio.to_thread(db.run_migrations)
    elif settings.create_schema:
        await db.create_all()
    if settings.kafka_brokers:
        _producer = KafkaProducer(settings.kafka_brokers)
        await _producer.start()
        _drain_task = asyncio.create_task(
            drain_outbox(
                _producer,
                poll_interval=settings.outbox_poll_interval,
                service=deps.SERVICE_NAME,
            )
        )
    JOB_DURATION.labels(deps.SERVICE_NAME, "startup").observe(0)
    logger.info("service.started", publisher=bool(settings.kafka_brokers))


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _producer, _drain_task
    if _drain_task is not None:
        _drain_task.cancel()
        try:
            await _drain_task
        except asyncio.CancelledError:
            pass
        _drain_task = None
    if _producer is not None:
        await _producer.stop()
        _producer = None
    await db.dispose_engine()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
async def readyz() -> dict[str, str]:
    return {"status": "ready"}


app.include_router(router)
