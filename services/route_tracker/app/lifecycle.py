"""Route lifecycle: start, traces, POI removal/restoration and reordering.

A route is either active or completed. Completion is recomputed from the
circuit membership and the trace log after every mutation, inside the same
transaction as the write that triggered it, and only the operation that
flips a route to completed fires the completion side effects.
"""

from __future__ import annotations

import asyncio
import math
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Sequence

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.db import get_session
from src.common.logging import get_logger, route_context
from src.common.metrics import ROUTE_TRANSITIONS
from src.common.outbox import enqueue

from . import completion, errors, models
from .circuits import (
    CircuitSource,
    CircuitStop,
    Target,
    TargetSpec,
    get_target_variant,
    route_target_kwargs,
)
from .deps import SERVICE_NAME
from .dispatcher import CompletionDispatcher, CompletionEffects
from .traces import TraceLog

logger = get_logger(__name__)
tracer = trace.get_tracer(__name__)

ROUTE_COMPLETED_TOPIC = "route.completed"
ROUTE_REVERTED_TOPIC = "route.reverted"

_UNAVAILABLE = "Route not found, already completed or owned by another user"


@dataclass
class StartResult:
    route: models.Route
    first_trace: models.VisitedTrace
    target: Target
    stops: list[CircuitStop] = field(default_factory=list)


@dataclass
class TraceResult:
    trace: models.VisitedTrace
    traces: list[models.VisitedTrace]
    completed: bool
    effects: CompletionEffects = field(default_factory=CompletionEffects)


@dataclass
class RemovalResult:
    removed_trace: models.RemovedTrace
    created: bool
    completed: bool
    effects: CompletionEffects = field(default_factory=CompletionEffects)


@dataclass
class RestoreResult:
    route: models.Route
    restored: bool
    reverted: bool


@dataclass
class ReorderResult:
    custom_circuit_id: int
    poi_ids: list[int]


@dataclass
class _Completion:
    route: models.Route
    target: Target
    visited: set[int]


def validate_fix(latitude: float | None, longitude: float | None) -> None:
    if latitude is None or longitude is None:
        raise errors.ValidationError("latitude and longitude are required")
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise errors.ValidationError("latitude and longitude must be finite numbers")
    if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
        raise errors.ValidationError("latitude or longitude out of range")


class RouteLifecycleManager:
    """Serializes mutations per route and keeps completion consistent."""

    def __init__(self, dispatcher: CompletionDispatcher) -> None:
        self.dispatcher = dispatcher
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def _route_lock(self, route_id: int, user_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(route_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[route_id] = lock
        with route_context(route_id, user_id):
            async with lock:
                yield

    async def start(
        self,
        user_id: int,
        spec: TargetSpec,
        latitude: float,
        longitude: float,
    ) -> StartResult:
        validate_fix(latitude, longitude)
        with tracer.start_as_current_span("route.start"):
            async with get_session() as session:
                async with session.begin():
                    source = CircuitSource(session)
                    target = await source.resolve(spec)
                    route = models.Route(
                        user_id=user_id,
                        is_completed=False,
                        **route_target_kwargs(target),
                    )
                    session.add(route)
                    await session.flush()
                    # The starting fix never counts as a POI visit.
                    first_trace = await TraceLog(session).append_visit(
                        route.id, latitude, longitude, None
                    )
                    stops = await source.ordered_pois(target)
        ROUTE_TRANSITIONS.labels(SERVICE_NAME, "started").inc()
        logger.info(
            "route.started",
            route_id=route.id,
            user_id=user_id,
            variant=get_target_variant(target).value,
            pois=len(stops),
        )
        return StartResult(route=route, first_trace=first_trace, target=target, stops=stops)

    async def record_trace(
        self,
        user_id: int,
        route_id: int,
        latitude: float,
        longitude: float,
        poi_id: int | None = None,
    ) -> TraceResult:
        validate_fix(latitude, longitude)
        done: _Completion | None = None
        with tracer.start_as_current_span("route.record_trace"):
            async with self._route_lock(route_id, user_id):
                async with get_session() as session:
                    async with session.begin():
                        route = await self._load_route(session, user_id, route_id)
                        if route.is_completed:
                            raise errors.Conflict("Route is already completed")
                        log = TraceLog(session)
                        new_trace = await log.append_visit(
                            route.id, latitude, longitude, poi_id
                        )
                        if poi_id is not None:
                            source = CircuitSource(session)
                            target = await source.target_of(route)
                            required, visited = await self._completion_sets(
                                source, log, route, target
                            )
                            if completion.evaluate(required, visited):
                                await self._mark_completed(session, route, target)
                                done = _Completion(route, target, visited)
                        traces = await log.visits(route.id)
            effects = await self._after_completion(user_id, done)
        logger.info(
            "route.trace_recorded",
            route_id=route_id,
            trace_id=new_trace.id,
            poi_id=poi_id,
            completed=done is not None,
        )
        return TraceResult(
            trace=new_trace,
            traces=traces,
            completed=done is not None,
            effects=effects,
        )

    async def remove_poi(self, user_id: int, route_id: int, poi_id: int) -> RemovalResult:
        done: _Completion | None = None
        with tracer.start_as_current_span("route.remove_poi"):
            async with self._route_lock(route_id, user_id):
                async with get_session() as session:
                    async with session.begin():
                        route = await self._load_route(session, user_id, route_id)
                        if route.is_completed:
                            raise errors.NotFound(_UNAVAILABLE)
                        source = CircuitSource(session)
                        target = await source.target_of(route)
                        if not await source.is_poi_member(target, poi_id):
                            raise errors.NotFound(
                                "POI is not part of this route's circuit"
                            )
                        log = TraceLog(session)
                        existing = await log.find_removal(route.id, poi_id)
                        if existing is not None:
                            return RemovalResult(
                                removed_trace=existing, created=False, completed=False
                            )
                        removal = await log.add_removal(route.id, user_id, poi_id)
                        required, visited = await self._completion_sets(
                            source, log, route, target
                        )
                        if completion.evaluate_relaxed(required, visited):
                            await self._mark_completed(session, route, target)
                            done = _Completion(route, target, visited)
            effects = await self._after_completion(user_id, done)
        ROUTE_TRANSITIONS.labels(SERVICE_NAME, "poi_removed").inc()
        logger.info(
            "route.poi_removed",
            route_id=route_id,
            poi_id=poi_id,
            completed=done is not None,
        )
        return RemovalResult(
            removed_trace=removal,
            created=True,
            completed=done is not None,
            effects=effects,
        )

    async def add_poi_back(self, user_id: int, route_id: int, poi_id: int) -> RestoreResult:
        with tracer.start_as_current_span("route.add_poi_back"):
            async with self._route_lock(route_id, user_id):
                async with get_session() as session:
                    async with session.begin():
                        # Completed routes are accepted so a completion can be undone.
                        route = await self._load_route(session, user_id, route_id)
                        source = CircuitSource(session)
                        target = await source.target_of(route)
                        if not await source.is_poi_member(target, poi_id):
                            raise errors.NotFound(
                                "POI is not part of this route's circuit"
                            )
                        log = TraceLog(session)
                        removal = await log.find_removal(route.id, poi_id)
                        if removal is None:
                            return RestoreResult(route=route, restored=False, reverted=False)
                        await log.delete_removal(removal)
                        required, visited = await self._completion_sets(
                            source, log, route, target
                        )
                        reverted = False
                        if route.is_completed and completion.should_revert(
                            required, visited
                        ):
                            # completed_at is kept; the next completion overwrites it.
                            route.is_completed = False
                            reverted = True
                            await enqueue(
                                ROUTE_REVERTED_TOPIC,
                                str(route.id),
                                {
                                    "event": ROUTE_REVERTED_TOPIC,
                                    "route_id": route.id,
                                    "user_id": route.user_id,
                                    "poi_id": poi_id,
                                },
                                session=session,
                            )
        ROUTE_TRANSITIONS.labels(SERVICE_NAME, "poi_restored").inc()
        if reverted:
            ROUTE_TRANSITIONS.labels(SERVICE_NAME, "reverted").inc()
        logger.info(
            "route.poi_restored", route_id=route_id, poi_id=poi_id, reverted=reverted
        )
        return RestoreResult(route=route, restored=True, reverted=reverted)

    async def reorder_custom_circuit_pois(
        self, user_id: int, route_id: int, ordered_poi_ids: Sequence[int]
    ) -> ReorderResult:
        ordered = list(ordered_poi_ids)
        with tracer.start_as_current_span("route.reorder_pois"):
            async with self._route_lock(route_id, user_id):
                async with get_session() as session:
                    async with session.begin():
                        route = await self._load_route(session, user_id, route_id)
                        if route.is_completed:
                            raise errors.NotFound(_UNAVAILABLE)
                        if route.custom_circuit_id is None:
                            raise errors.InvalidOperation(
                                "Reordering is only available for custom circuits"
                            )
                        source = CircuitSource(session)
                        custom = await source.get_custom_circuit(
                            route.custom_circuit_id, for_update=True
                        )
                        current = source.get_custom_circuit_poi_ids(custom)
                        if sorted(ordered) != sorted(current):
                            raise errors.ValidationError(
                                "Ordered POIs do not match the circuit's POIs",
                                details={"expected": sorted(current)},
                            )
                        poi_ids = await source.set_custom_circuit_poi_ids(custom, ordered)
        logger.info(
            "custom_circuit.reordered",
            route_id=route_id,
            custom_circuit_id=custom.id,
            old_order=current,
            new_order=poi_ids,
        )
        return ReorderResult(custom_circuit_id=custom.id, poi_ids=poi_ids)

    async def save_navigation_route(
        self,
        user_id: int,
        poi_id: int,
        *,
        start_location: dict,
        end_location: dict,
        distance: float,
        duration: float,
        transport_mode: str | None = None,
        poi_name: str | None = None,
        points_earned: int | None = None,
    ) -> models.Route:
        """Store a finished standalone navigation to a single POI."""

        async with get_session() as session:
            async with session.begin():
                target = await CircuitSource(session).resolve(TargetSpec(poi_id=poi_id))
                route = models.Route(
                    user_id=user_id,
                    poi_name=poi_name,
                    start_location=start_location,
                    end_location=end_location,
                    distance=distance,
                    duration=duration,
                    transport_mode=transport_mode or "foot",
                    points_earned=points_earned,
                    is_completed=True,
                    completed_at=models.utcnow(),
                    **route_target_kwargs(target),
                )
                session.add(route)
                await session.flush()
        ROUTE_TRANSITIONS.labels(SERVICE_NAME, "saved").inc()
        logger.info("route.saved", route_id=route.id, user_id=user_id, poi_id=poi_id)
        return route

    async def _load_route(
        self, session: AsyncSession, user_id: int, route_id: int
    ) -> models.Route:
        route = await session.scalar(
            select(models.Route).where(models.Route.id == route_id).with_for_update()
        )
        if route is None or route.user_id != user_id:
            raise errors.NotFound("Route not found")
        return route

    async def _completion_sets(
        self,
        source: CircuitSource,
        log: TraceLog,
        route: models.Route,
        target: Target,
    ) -> tuple[list[int], set[int]]:
        original = await source.get_original_poi_ids(target)
        removed = await log.removed_poi_ids(route.id)
        visited = await log.visited_poi_ids(route.id)
        return completion.required_poi_ids(original, removed), visited

    async def _mark_completed(
        self, session: AsyncSession, route: models.Route, target: Target
    ) -> None:
        route.is_completed = True
        route.completed_at = models.utcnow()
        await enqueue(
            ROUTE_COMPLETED_TOPIC,
            str(route.id),
            {
                "event": ROUTE_COMPLETED_TOPIC,
                "route_id": route.id,
                "user_id": route.user_id,
                "variant": get_target_variant(target).value,
                "completed_at": route.completed_at.isoformat(),
            },
            session=session,
        )

    async def _after_completion(
        self, user_id: int, done: _Completion | None
    ) -> CompletionEffects:
        if done is None:
            return CompletionEffects()
        ROUTE_TRANSITIONS.labels(SERVICE_NAME, "completed").inc()
        logger.info("route.completed", route_id=done.route.id, user_id=user_id)
        return await self.dispatcher.on_route_completed(
            done.route.id, user_id, done.target, done.visited
        )
