"""Side effects fired when a route becomes completed."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import AbstractSet, Protocol

from sqlalchemy import select

from src.common.db import get_session
from src.common.logging import get_logger
from src.common.metrics import JOB_DURATION, SIDE_EFFECT_FAILURES

from . import models
from .circuits import FixedCircuit, Target, target_label
from .deps import SERVICE_NAME

logger = get_logger(__name__)


@dataclass(frozen=True)
class PointsAward:
    points_awarded: int
    total_points: int


@dataclass(frozen=True)
class CompletionEffects:
    album_id: int | None = None
    points_awarded: PointsAward | None = None


class AlbumService(Protocol):
    async def create_album(self, user_id: int, name: str) -> int: ...

    async def attach_media(self, album_id: int, poi_ids: AbstractSet[int]) -> int: ...


class GamificationService(Protocol):
    async def award_circuit_completion(
        self, user_id: int, circuit_id: int, is_premium: bool
    ) -> PointsAward: ...


class SqlAlbumService:
    """Albums grouping the gallery files of visited POIs."""

    def __init__(self, media_type: str = "imageAlbum") -> None:
        self.media_type = media_type

    async def create_album(self, user_id: int, name: str) -> int:
        async with get_session() as session:
            album = models.Album(user_id=user_id, name=name)
            session.add(album)
            await session.commit()
            return album.id

    async def attach_media(self, album_id: int, poi_ids: AbstractSet[int]) -> int:
        if not poi_ids:
            return 0
        async with get_session() as session:
            file_ids = list(
                await session.scalars(
                    select(models.POIFile.id)
                    .where(
                        models.POIFile.poi_id.in_(sorted(poi_ids)),
                        models.POIFile.type == self.media_type,
                    )
                    .order_by(models.POIFile.id)
                )
            )
            session.add_all(
                models.AlbumMedia(album_id=album_id, poi_file_id=file_id)
                for file_id in file_ids
            )
            await session.commit()
        return len(file_ids)


class SqlGamificationService:
    """Flat completion award credited to the user's points ledger."""

    def __init__(
        self, completion_points: int = 100, premium_completion_points: int = 200
    ) -> None:
        self.completion_points = completion_points
        self.premium_completion_points = premium_completion_points

    async def award_circuit_completion(
        self, user_id: int, circuit_id: int, is_premium: bool
    ) -> PointsAward:
        points = (
            self.premium_completion_points if is_premium else self.completion_points
        )
        async with get_session() as session:
            ledger = await session.get(
                models.UserPoints, user_id, with_for_update=True
            )
            if ledger is None:
                ledger = models.UserPoints(user_id=user_id, total_points=0, level=1)
                session.add(ledger)
            ledger.total_points = (ledger.total_points or 0) + points
            await session.commit()
            total = ledger.total_points
        logger.info(
            "points.awarded",
            user_id=user_id,
            circuit_id=circuit_id,
            points=points,
            total_points=total,
        )
        return PointsAward(points_awarded=points, total_points=total)


class CompletionDispatcher:
    """Runs album assembly and the point award for a freshly completed route.

    Each effect is best effort: a failure is logged and counted, the
    corresponding result field stays ``None`` and nothing is raised, so the
    completion that triggered it is never undone.
    """

    def __init__(
        self, albums: AlbumService, gamification: GamificationService
    ) -> None:
        self.albums = albums
        self.gamification = gamification

    async def on_route_completed(
        self,
        route_id: int,
        user_id: int,
        target: Target,
        visited_poi_ids: AbstractSet[int],
    ) -> CompletionEffects:
        start = time.monotonic()
        album_id = await self._build_album(route_id, user_id, target, visited_poi_ids)
        points = await self._award_points(route_id, user_id, target)
        JOB_DURATION.labels(SERVICE_NAME, "route_completion_effects").observe(
            time.monotonic() - start
        )
        return CompletionEffects(album_id=album_id, points_awarded=points)

    async def _build_album(
        self,
        route_id: int,
        user_id: int,
        target: Target,
        visited_poi_ids: AbstractSet[int],
    ) -> int | None:
        name = f"Circuit Album: {target_label(target)} ({date.today().isoformat()})"
        try:
            album_id = await self.albums.create_album(user_id, name)
            attached = await self.albums.attach_media(album_id, visited_poi_ids)
        except Exception:
            SIDE_EFFECT_FAILURES.labels(SERVICE_NAME, "album").inc()
            logger.exception("album.create_failed", route_id=route_id, user_id=user_id)
            return None
        logger.info(
            "album.created", route_id=route_id, album_id=album_id, media=attached
        )
        return album_id

    async def _award_points(
        self, route_id: int, user_id: int, target: Target
    ) -> PointsAward | None:
        if not isinstance(target, FixedCircuit):
            return None
        try:
            return await self.gamification.award_circuit_completion(
                user_id, target.circuit_id, target.is_premium
            )
        except Exception:
            SIDE_EFFECT_FAILURES.labels(SERVICE_NAME, "points").inc()
            logger.exception(
                "points.award_failed",
                route_id=route_id,
                user_id=user_id,
                circuit_id=target.circuit_id,
            )
            return None
