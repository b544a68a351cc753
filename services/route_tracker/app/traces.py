"""Trace log of a route: visited fixes and POI removals."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models


class TraceLog:
    """Reads and appends trace rows inside the caller's transaction.

    Visited traces are never updated or deleted; their chronology is the
    insertion order given by the autoincrement id. Removed traces are the
    only rows that get deleted, when a POI is added back.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append_visit(
        self,
        route_id: int,
        latitude: float,
        longitude: float,
        poi_id: int | None = None,
    ) -> models.VisitedTrace:
        trace = models.VisitedTrace(
            route_id=route_id,
            latitude=latitude,
            longitude=longitude,
            poi_id=poi_id,
        )
        self._session.add(trace)
        await self._session.flush()
        return trace

    async def visits(self, route_id: int) -> list[models.VisitedTrace]:
        result = await self._session.scalars(
            select(models.VisitedTrace)
            .where(models.VisitedTrace.route_id == route_id)
            .order_by(models.VisitedTrace.id)
        )
        return list(result)

    async def visited_poi_ids(self, route_id: int) -> set[int]:
        result = await self._session.scalars(
            select(models.VisitedTrace.poi_id)
            .where(
                models.VisitedTrace.route_id == route_id,
                models.VisitedTrace.poi_id.is_not(None),
            )
            .distinct()
        )
        return set(result)

    async def removals(self, route_id: int) -> list[models.RemovedTrace]:
        result = await self._session.scalars(
            select(models.RemovedTrace)
            .where(models.RemovedTrace.route_id == route_id)
            .order_by(models.RemovedTrace.id)
        )
        return list(result)

    async def removed_poi_ids(self, route_id: int) -> set[int]:
        result = await self._session.scalars(
            select(models.RemovedTrace.poi_id).where(
                models.RemovedTrace.route_id == route_id
            )
        )
        return set(result)

    async def find_removal(
        self, route_id: int, poi_id: int
    ) -> models.RemovedTrace | None:
        return await self._session.scalar(
            select(models.RemovedTrace).where(
                models.RemovedTrace.route_id == route_id,
                models.RemovedTrace.poi_id == poi_id,
            )
        )

    async def add_removal(
        self, route_id: int, user_id: int, poi_id: int
    ) -> models.RemovedTrace:
        removal = models.RemovedTrace(route_id=route_id, user_id=user_id, poi_id=poi_id)
        self._session.add(removal)
        await self._session.flush()
        return removal

    async def delete_removal(self, removal: models.RemovedTrace) -> None:
        await self._session.delete(removal)
        await self._session.flush()
