"""Read side: route detail with progress statistics and completed routes."""

from __future__ import annotations

import math
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import errors, models, schemas
from .circuits import CircuitSource, CircuitStop, get_target_variant, route_variant
from .completion import required_poi_ids
from .traces import TraceLog


def _haversine(p1: tuple[float, float], p2: tuple[float, float]) -> float:
    lat1, lon1 = map(math.radians, p1)
    lat2, lon2 = map(math.radians, p2)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.asin(math.sqrt(a))
    return 6371000 * c


def travelled_km(traces: Sequence[models.VisitedTrace]) -> float:
    metres = sum(
        _haversine((a.latitude, a.longitude), (b.latitude, b.longitude))
        for a, b in zip(traces, traces[1:])
    )
    return round(metres / 1000, 2)


def elapsed_minutes(traces: Sequence[models.VisitedTrace]) -> int:
    if len(traces) < 2:
        return 0
    first, last = traces[0].created_at, traces[-1].created_at
    if first is None or last is None:
        return 0
    return round((last - first).total_seconds() / 60)


def completion_percentage(required: Sequence[int], visited: set[int]) -> int:
    if not required:
        return 0
    done = sum(1 for poi_id in required if poi_id in visited)
    return min(100, round(done / len(required) * 100))


def _poi_rows(
    stops: Sequence[CircuitStop], visited: set[int], removed: set[int]
) -> list[schemas.CircuitPoiSchema]:
    return [
        schemas.CircuitPoiSchema(
            id=stop.poi.id,
            name=stop.poi.name,
            latitude=stop.poi.latitude,
            longitude=stop.poi.longitude,
            order=stop.order,
            estimated_time=stop.estimated_time,
            visited=stop.poi.id in visited,
            removed=stop.poi.id in removed,
        )
        for stop in stops
    ]


async def route_detail(
    session: AsyncSession, user_id: int, route_id: int
) -> schemas.RouteDetailResponse:
    route = await session.get(models.Route, route_id)
    if route is None or route.user_id != user_id:
        raise errors.NotFound("Route not found")

    source = CircuitSource(session)
    log = TraceLog(session)
    target = await source.target_of(route)
    stops = await source.ordered_pois(target)
    traces = await log.visits(route.id)
    removals = await log.removals(route.id)
    removed = {removal.poi_id for removal in removals}
    visited = {t.poi_id for t in traces if t.poi_id is not None}

    original = [stop.poi.id for stop in stops]
    required = required_poi_ids(original, removed)
    visited_required = [poi_id for poi_id in required if poi_id in visited]

    current = None
    if traces:
        last = traces[-1]
        current = schemas.CurrentLocation(
            latitude=last.latitude, longitude=last.longitude, timestamp=last.created_at
        )

    return schemas.RouteDetailResponse(
        route=schemas.RouteSchema.model_validate(route),
        variant=get_target_variant(target).value,
        pois=_poi_rows(stops, visited, removed),
        visited_traces=[schemas.VisitedTraceSchema.model_validate(t) for t in traces],
        removed_traces=[
            schemas.RemovedTraceSchema.model_validate(r) for r in removals
        ],
        statistics=schemas.RouteStatistics(
            total_pois=len(original),
            visited_count=len(visited_required),
            removed_count=len(removed & set(original)),
            remaining_count=len(required) - len(visited_required),
            total_distance_km=travelled_km(traces),
            duration_min=elapsed_minutes(traces),
            traces_count=len(traces),
            completion_percentage=completion_percentage(required, visited),
        ),
        current_location=current,
    )


async def completed_routes(
    session: AsyncSession, user_id: int
) -> schemas.CompletedRoutesResponse:
    routes = await session.scalars(
        select(models.Route)
        .where(models.Route.user_id == user_id, models.Route.is_completed.is_(True))
        .order_by(models.Route.completed_at.desc(), models.Route.id.desc())
    )
    source = CircuitSource(session)
    log = TraceLog(session)
    items: list[schemas.CompletedRouteSchema] = []
    for route in list(routes):
        try:
            target = await source.target_of(route)
        except errors.NotFound:
            # Target deleted since completion, the route stays listed.
            items.append(
                schemas.CompletedRouteSchema(
                    route=schemas.RouteSchema.model_validate(route),
                    variant=route_variant(route).value,
                    total_pois=0,
                    visited_count=0,
                )
            )
            continue
        original = await source.get_original_poi_ids(target)
        visited = await log.visited_poi_ids(route.id)
        items.append(
            schemas.CompletedRouteSchema(
                route=schemas.RouteSchema.model_validate(route),
                variant=get_target_variant(target).value,
                total_pois=len(original),
                visited_count=len(visited & set(original)),
            )
        )
    return schemas.CompletedRoutesResponse(routes=items)
