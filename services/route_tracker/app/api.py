"""HTTP adapters over the route lifecycle and read side."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.common.db import get_session

from . import deps, queries, schemas
from .circuits import CircuitStop, TargetSpec, get_target_variant
from .dispatcher import CompletionEffects
from .lifecycle import RouteLifecycleManager

router = APIRouter(prefix="/routes", tags=["routes"])


def _points(effects: CompletionEffects) -> schemas.PointsAwardSchema | None:
    if effects.points_awarded is None:
        return None
    return schemas.PointsAwardSchema(
        points_awarded=effects.points_awarded.points_awarded,
        total_points=effects.points_awarded.total_points,
    )


def _stops(stops: list[CircuitStop]) -> list[schemas.CircuitPoiSchema]:
    return [
        schemas.CircuitPoiSchema(
            id=stop.poi.id,
            name=stop.poi.name,
            latitude=stop.poi.latitude,
            longitude=stop.poi.longitude,
            order=stop.order,
            estimated_time=stop.estimated_time,
        )
        for stop in stops
    ]


@router.post("/start", response_model=schemas.StartRouteResponse)
async def start_route(
    data: schemas.StartRouteRequest,
    user_id: int = Depends(deps.get_current_user_id),
    manager: RouteLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> schemas.StartRouteResponse:
    result = await manager.start(
        user_id,
        TargetSpec(
            circuit_id=data.circuit_id,
            is_custom_circuit=data.is_custom_circuit,
            poi_id=data.poi_id,
        ),
        data.latitude,
        data.longitude,
    )
    return schemas.StartRouteResponse(
        route=schemas.RouteSchema.model_validate(result.route),
        variant=get_target_variant(result.target).value,
        pois=_stops(result.stops),
        first_trace=schemas.VisitedTraceSchema.model_validate(result.first_trace),
        is_route_completed=False,
    )


@router.post("/trace", response_model=schemas.TraceResponse)
async def add_trace(
    data: schemas.TraceRequest,
    user_id: int = Depends(deps.get_current_user_id),
    manager: RouteLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> schemas.TraceResponse:
    result = await manager.record_trace(
        user_id, data.route_id, data.latitude, data.longitude, data.poi_id
    )
    return schemas.TraceResponse(
        new_trace=schemas.VisitedTraceSchema.model_validate(result.trace),
        visited_traces=[
            schemas.VisitedTraceSchema.model_validate(t) for t in result.traces
        ],
        is_route_completed=result.completed,
        album_id=result.effects.album_id,
        points_awarded=_points(result.effects),
    )


@router.post("/remove-poi", response_model=schemas.RemovePoiResponse)
async def remove_poi(
    data: schemas.PoiChangeRequest,
    user_id: int = Depends(deps.get_current_user_id),
    manager: RouteLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> schemas.RemovePoiResponse:
    result = await manager.remove_poi(user_id, data.route_id, data.poi_id)
    return schemas.RemovePoiResponse(
        removed_trace=schemas.RemovedTraceSchema.model_validate(result.removed_trace),
        already_removed=not result.created,
        is_route_completed=result.completed,
        album_id=result.effects.album_id,
        points_awarded=_points(result.effects),
    )


@router.post("/add-poi", response_model=schemas.AddPoiResponse)
async def add_poi(
    data: schemas.PoiChangeRequest,
    user_id: int = Depends(deps.get_current_user_id),
    manager: RouteLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> schemas.AddPoiResponse:
    result = await manager.add_poi_back(user_id, data.route_id, data.poi_id)
    return schemas.AddPoiResponse(
        restored=result.restored,
        reverted=result.reverted,
        is_route_completed=bool(result.route.is_completed),
    )


@router.post("/reorder-pois", response_model=schemas.ReorderResponse)
async def reorder_pois(
    data: schemas.ReorderRequest,
    user_id: int = Depends(deps.get_current_user_id),
    manager: RouteLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> schemas.ReorderResponse:
    result = await manager.reorder_custom_circuit_pois(
        user_id, data.route_id, data.ordered_poi_ids
    )
    return schemas.ReorderResponse(
        custom_circuit_id=result.custom_circuit_id,
        ordered_poi_ids=result.poi_ids,
    )


@router.post(
    "/save", response_model=schemas.RouteSchema, status_code=status.HTTP_201_CREATED
)
async def save_route(
    data: schemas.SaveRouteRequest,
    user_id: int = Depends(deps.get_current_user_id),
    manager: RouteLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> schemas.RouteSchema:
    route = await manager.save_navigation_route(
        user_id,
        data.poi_id,
        poi_name=data.poi_name,
        start_location=data.start_location.model_dump(),
        end_location=data.end_location.model_dump(),
        distance=data.distance,
        duration=data.duration,
        transport_mode=data.transport_mode,
        points_earned=data.points_earned,
    )
    return schemas.RouteSchema.model_validate(route)


@router.get("/user", response_model=schemas.CompletedRoutesResponse)
async def user_routes(
    user_id: int = Depends(deps.get_current_user_id),
) -> schemas.CompletedRoutesResponse:
    async with get_session() as session:
        return await queries.completed_routes(session, user_id)


@router.get("/{route_id}", response_model=schemas.RouteDetailResponse)
async def get_route(
    route_id: int,
    user_id: int = Depends(deps.get_current_user_id),
) -> schemas.RouteDetailResponse:
    async with get_session() as session:
        return await queries.route_detail(session, user_id, route_id)
