"""Async SQLAlchemy engine, sessions and schema management."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from alembic import command  # type: ignore[attr-defined]
from alembic.config import Config

from . import settings as common_settings

Base = declarative_base()

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def _json_serializer(value: Any) -> str:
    # POI id lists and locations are stored compactly.
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": False, "json_serializer": _json_serializer}
    if not url.startswith("sqlite"):
        options["pool_pre_ping"] = True
        return options
    if ":memory:" in url:
        # A single shared connection, otherwise every session sees an empty db.
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    return options


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = common_settings.settings.postgres_dsn
        _engine = create_async_engine(url, **_engine_options(url))
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _sessionmaker


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Provide a session; callers own the transaction boundaries."""

    async with get_sessionmaker()() as session:
        yield session


async def create_all() -> None:
    """Create every table registered on :data:`Base` (local runs and tests)."""

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


def alembic_config() -> Config:
    """Alembic configuration pointed at the runtime database DSN."""

    cfg = Config("alembic.ini")
    cfg.set_main_option("sqlalchemy.url", common_settings.settings.postgres_dsn)
    return cfg


def run_migrations() -> None:
    """Upgrade the schema to the latest revision."""

    command.upgrade(alembic_config(), "head")
