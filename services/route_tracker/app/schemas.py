from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class StartRouteRequest(BaseModel):
    circuit_id: Optional[int] = None
    is_custom_circuit: bool = False
    poi_id: Optional[int] = None
    latitude: float
    longitude: float
    # Accepted for client compatibility, the first trace never marks a visit.
    pois: List[int] = Field(default_factory=list)


class TraceRequest(BaseModel):
    route_id: int
    latitude: float
    longitude: float
    poi_id: Optional[int] = None


class PoiChangeRequest(BaseModel):
    route_id: int
    poi_id: int


class ReorderRequest(BaseModel):
    route_id: int
    ordered_poi_ids: List[int]


class Location(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class SaveRouteRequest(BaseModel):
    poi_id: int
    poi_name: Optional[str] = None
    start_location: Location
    end_location: Location
    distance: float = Field(gt=0)
    duration: float = Field(gt=0)
    transport_mode: Optional[str] = None
    points_earned: Optional[int] = Field(default=None, ge=0)


class RouteSchema(BaseModel):
    id: int
    user_id: int
    circuit_id: Optional[int] = None
    custom_circuit_id: Optional[int] = None
    poi_id: Optional[int] = None
    is_completed: bool
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    poi_name: Optional[str] = None
    start_location: Optional[dict] = None
    end_location: Optional[dict] = None
    distance: Optional[float] = None
    duration: Optional[float] = None
    transport_mode: Optional[str] = None
    points_earned: Optional[int] = None

    class Config:
        from_attributes = True


class VisitedTraceSchema(BaseModel):
    id: int
    route_id: int
    latitude: float
    longitude: float
    poi_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RemovedTraceSchema(BaseModel):
    id: int
    route_id: int
    user_id: int
    poi_id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CircuitPoiSchema(BaseModel):
    id: int
    name: str
    latitude: float
    longitude: float
    order: int
    estimated_time: Optional[int] = None
    visited: bool = False
    removed: bool = False


class StartRouteResponse(BaseModel):
    route: RouteSchema
    variant: str
    pois: List[CircuitPoiSchema]
    first_trace: VisitedTraceSchema
    is_route_completed: bool = False


class PointsAwardSchema(BaseModel):
    points_awarded: int
    total_points: int


class TraceResponse(BaseModel):
    new_trace: VisitedTraceSchema
    visited_traces: List[VisitedTraceSchema]
    is_route_completed: bool
    album_id: Optional[int] = None
    points_awarded: Optional[PointsAwardSchema] = None


class RemovePoiResponse(BaseModel):
    removed_trace: RemovedTraceSchema
    already_removed: bool
    is_route_completed: bool
    album_id: Optional[int] = None
    points_awarded: Optional[PointsAwardSchema] = None


class AddPoiResponse(BaseModel):
    restored: bool
    reverted: bool
    is_route_completed: bool


class ReorderResponse(BaseModel):
    custom_circuit_id: int
    ordered_poi_ids: List[int]


class RouteStatistics(BaseModel):
    total_pois: int
    visited_count: int
    removed_count: int
    remaining_count: int
    total_distance_km: float
    duration_min: int
    traces_count: int
    completion_percentage: int


class CurrentLocation(BaseModel):
    latitude: float
    longitude: float
    timestamp: Optional[datetime] = None


class RouteDetailResponse(BaseModel):
    route: RouteSchema
    variant: str
    pois: List[CircuitPoiSchema]
    visited_traces: List[VisitedTraceSchema]
    removed_traces: List[RemovedTraceSchema]
    statistics: RouteStatistics
    current_location: Optional[CurrentLocation] = None


class CompletedRouteSchema(BaseModel):
    route: RouteSchema
    variant: str
    total_pois: int
    visited_count: int


class CompletedRoutesResponse(BaseModel):
    routes: List[CompletedRouteSchema]
