import asyncio

import pytest
from sqlalchemy import func, select

from conftest import (
    CUSTOM_TOUR,
    DELETED_CUSTOM_TOUR,
    MEDINA_WALK,
    OTHER_USER_ID,
    POI_A,
    POI_B,
    POI_C,
    POI_D,
    POI_GONE,
    RETIRED_CIRCUIT,
    USER_ID,
)
from services.route_tracker.app import errors, models
from services.route_tracker.app.circuits import TargetSpec
from services.route_tracker.app.dispatcher import CompletionDispatcher, PointsAward
from services.route_tracker.app.lifecycle import RouteLifecycleManager
from src.common import db
from src.common.outbox import Outbox

LAT, LON = 34.0617, -4.9836


class RecordingAlbums:
    def __init__(self) -> None:
        self.created: list[tuple[int, str]] = []
        self.attached: list[set[int]] = []

    async def create_album(self, user_id: int, name: str) -> int:
        self.created.append((user_id, name))
        return len(self.created)

    async def attach_media(self, album_id: int, poi_ids) -> int:
        self.attached.append(set(poi_ids))
        return len(poi_ids)


class RecordingPoints:
    def __init__(self) -> None:
        self.calls: list[tuple[int, int, bool]] = []

    async def award_circuit_completion(
        self, user_id: int, circuit_id: int, is_premium: bool
    ) -> PointsAward:
        self.calls.append((user_id, circuit_id, is_premium))
        return PointsAward(points_awarded=100, total_points=100 * len(self.calls))


@pytest.fixture
def albums() -> RecordingAlbums:
    return RecordingAlbums()


@pytest.fixture
def points() -> RecordingPoints:
    return RecordingPoints()


@pytest.fixture
def manager(albums: RecordingAlbums, points: RecordingPoints) -> RouteLifecycleManager:
    return RouteLifecycleManager(CompletionDispatcher(albums=albums, gamification=points))


async def _start(manager: RouteLifecycleManager, **spec) -> int:
    spec.setdefault("circuit_id", MEDINA_WALK)
    result = await manager.start(USER_ID, TargetSpec(**spec), LAT, LON)
    return result.route.id


async def _route(route_id: int) -> models.Route:
    async with db.get_session() as session:
        route = await session.get(models.Route, route_id)
        assert route is not None
        return route


@pytest.mark.anyio
async def test_start_records_null_poi_first_trace(
    database: None, manager: RouteLifecycleManager
) -> None:
    result = await manager.start(USER_ID, TargetSpec(circuit_id=MEDINA_WALK), LAT, LON)

    assert result.route.is_completed is False
    assert result.route.completed_at is None
    assert result.first_trace.poi_id is None
    assert (result.first_trace.latitude, result.first_trace.longitude) == (LAT, LON)
    # Soft-deleted POIs are not part of the circuit.
    assert [stop.poi.id for stop in result.stops] == [POI_A, POI_B, POI_C]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "spec",
    [
        TargetSpec(circuit_id=999),
        TargetSpec(circuit_id=RETIRED_CIRCUIT),
        TargetSpec(circuit_id=DELETED_CUSTOM_TOUR, is_custom_circuit=True),
        TargetSpec(poi_id=POI_GONE),
    ],
)
async def test_start_rejects_missing_targets(
    database: None, manager: RouteLifecycleManager, spec: TargetSpec
) -> None:
    with pytest.raises(errors.NotFound):
        await manager.start(USER_ID, spec, LAT, LON)


@pytest.mark.anyio
async def test_start_validates_coordinates(
    database: None, manager: RouteLifecycleManager
) -> None:
    with pytest.raises(errors.ValidationError):
        await manager.start(USER_ID, TargetSpec(circuit_id=MEDINA_WALK), 120.0, LON)
    with pytest.raises(errors.ValidationError):
        await manager.start(USER_ID, TargetSpec(), LAT, LON)


@pytest.mark.anyio
async def test_route_completes_on_last_required_visit(
    database: None,
    manager: RouteLifecycleManager,
    albums: RecordingAlbums,
    points: RecordingPoints,
) -> None:
    route_id = await _start(manager)

    first = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    second = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)
    assert not first.completed and not second.completed
    assert albums.created == []

    third = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_C)
    assert third.completed is True
    assert third.effects.album_id == 1
    assert third.effects.points_awarded == PointsAward(100, 100)
    assert albums.attached == [{POI_A, POI_B, POI_C}]
    assert points.calls == [(USER_ID, MEDINA_WALK, False)]
    assert [t.poi_id for t in third.traces] == [None, POI_A, POI_B, POI_C]

    route = await _route(route_id)
    assert route.is_completed is True
    assert route.completed_at is not None

    async with db.get_session() as session:
        events = list(await session.scalars(select(Outbox.topic)))
    assert events == ["route.completed"]


@pytest.mark.anyio
async def test_repeated_visits_count_once(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    for poi_id in (POI_A, POI_A, POI_B, None, POI_B):
        result = await manager.record_trace(USER_ID, route_id, LAT, LON, poi_id)
        assert result.completed is False


@pytest.mark.anyio
async def test_traces_rejected_once_completed(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    for poi_id in (POI_A, POI_B, POI_C):
        await manager.record_trace(USER_ID, route_id, LAT, LON, poi_id)

    with pytest.raises(errors.Conflict):
        await manager.record_trace(USER_ID, route_id, LAT, LON)


@pytest.mark.anyio
async def test_trace_on_foreign_or_missing_route(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    with pytest.raises(errors.NotFound):
        await manager.record_trace(OTHER_USER_ID, route_id, LAT, LON, POI_A)
    with pytest.raises(errors.NotFound):
        await manager.record_trace(USER_ID, 12345, LAT, LON, POI_A)


@pytest.mark.anyio
async def test_removed_poi_is_not_required(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    removal = await manager.remove_poi(USER_ID, route_id, POI_C)
    assert removal.created and not removal.completed

    first = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    second = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)

    assert first.completed is False
    assert second.completed is True


@pytest.mark.anyio
async def test_remove_poi_is_idempotent(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    first = await manager.remove_poi(USER_ID, route_id, POI_B)
    again = await manager.remove_poi(USER_ID, route_id, POI_B)

    assert first.created is True
    assert again.created is False
    assert again.removed_trace.id == first.removed_trace.id
    async with db.get_session() as session:
        count = await session.scalar(
            select(func.count()).select_from(models.RemovedTrace)
        )
    assert count == 1


@pytest.mark.anyio
async def test_removing_last_unvisited_poi_completes_route(
    database: None, manager: RouteLifecycleManager, albums: RecordingAlbums
) -> None:
    route_id = await _start(manager)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)

    result = await manager.remove_poi(USER_ID, route_id, POI_C)

    assert result.completed is True
    assert result.effects.album_id is not None
    route = await _route(route_id)
    assert route.is_completed is True
    assert route.completed_at is not None


@pytest.mark.anyio
async def test_remove_poi_rejections(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    with pytest.raises(errors.NotFound):
        await manager.remove_poi(USER_ID, route_id, POI_D)
    with pytest.raises(errors.NotFound):
        await manager.remove_poi(OTHER_USER_ID, route_id, POI_A)

    await manager.remove_poi(USER_ID, route_id, POI_C)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)
    with pytest.raises(errors.NotFound):
        await manager.remove_poi(USER_ID, route_id, POI_A)


@pytest.mark.anyio
async def test_add_poi_back_reverts_completion(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    await manager.remove_poi(USER_ID, route_id, POI_C)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    done = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)
    assert done.completed is True
    completed_at = (await _route(route_id)).completed_at

    result = await manager.add_poi_back(USER_ID, route_id, POI_C)

    assert result.restored is True
    assert result.reverted is True
    route = await _route(route_id)
    assert route.is_completed is False
    assert route.completed_at == completed_at

    # Active again, so traces are accepted and C completes it.
    again = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_C)
    assert again.completed is True


@pytest.mark.anyio
async def test_add_poi_back_keeps_completion_when_poi_was_visited(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_C)
    await manager.remove_poi(USER_ID, route_id, POI_C)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    done = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)
    assert done.completed is True

    result = await manager.add_poi_back(USER_ID, route_id, POI_C)

    assert result.restored is True
    assert result.reverted is False
    assert (await _route(route_id)).is_completed is True


@pytest.mark.anyio
async def test_add_poi_back_without_removal_is_noop(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    result = await manager.add_poi_back(USER_ID, route_id, POI_A)
    assert result.restored is False
    assert result.reverted is False

    with pytest.raises(errors.NotFound):
        await manager.add_poi_back(USER_ID, route_id, POI_D)
    with pytest.raises(errors.NotFound):
        await manager.add_poi_back(OTHER_USER_ID, route_id, POI_A)


@pytest.mark.anyio
async def test_custom_circuit_route_follows_selected_pois(
    database: None, manager: RouteLifecycleManager, points: RecordingPoints
) -> None:
    result = await manager.start(
        USER_ID, TargetSpec(circuit_id=CUSTOM_TOUR, is_custom_circuit=True), LAT, LON
    )
    route_id = result.route.id
    assert [stop.poi.id for stop in result.stops] == [POI_C, POI_A, POI_B]
    assert result.route.custom_circuit_id == CUSTOM_TOUR
    assert result.route.circuit_id is None

    for poi_id in (POI_C, POI_A):
        assert not (await manager.record_trace(USER_ID, route_id, LAT, LON, poi_id)).completed
    final = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)

    assert final.completed is True
    assert final.effects.album_id is not None
    # No fixed circuit to award against.
    assert final.effects.points_awarded is None
    assert points.calls == []


@pytest.mark.anyio
async def test_single_poi_route_completes_on_visit(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager, circuit_id=None, poi_id=POI_D)
    result = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_D)
    assert result.completed is True


@pytest.mark.anyio
async def test_reorder_custom_circuit_pois(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager, circuit_id=CUSTOM_TOUR, is_custom_circuit=True)

    result = await manager.reorder_custom_circuit_pois(
        USER_ID, route_id, [POI_A, POI_B, POI_C]
    )

    assert result.custom_circuit_id == CUSTOM_TOUR
    assert result.poi_ids == [POI_A, POI_B, POI_C]
    async with db.get_session() as session:
        custom = await session.get(models.CustomCircuit, CUSTOM_TOUR)
    assert custom.selected_pois == [POI_A, POI_B, POI_C]
    assert (await _route(route_id)).is_completed is False


@pytest.mark.anyio
@pytest.mark.parametrize(
    "ordered",
    [
        [POI_A, POI_B],
        [POI_A, POI_B, POI_C, POI_D],
        [POI_A, POI_A, POI_B],
        [POI_A, POI_B, POI_C, POI_C],
        [],
    ],
)
async def test_reorder_requires_a_permutation(
    database: None, manager: RouteLifecycleManager, ordered: list[int]
) -> None:
    route_id = await _start(manager, circuit_id=CUSTOM_TOUR, is_custom_circuit=True)

    with pytest.raises(errors.ValidationError):
        await manager.reorder_custom_circuit_pois(USER_ID, route_id, ordered)

    async with db.get_session() as session:
        custom = await session.get(models.CustomCircuit, CUSTOM_TOUR)
    assert custom.selected_pois == [POI_C, POI_A, POI_B]


@pytest.mark.anyio
async def test_reorder_only_for_custom_circuits(
    database: None, manager: RouteLifecycleManager
) -> None:
    route_id = await _start(manager)
    with pytest.raises(errors.InvalidOperation):
        await manager.reorder_custom_circuit_pois(USER_ID, route_id, [POI_A, POI_B, POI_C])


@pytest.mark.anyio
async def test_concurrent_traces_complete_once(
    database: None,
    manager: RouteLifecycleManager,
    albums: RecordingAlbums,
) -> None:
    route_id = await _start(manager)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)

    results = await asyncio.gather(
        *(
            manager.record_trace(USER_ID, route_id, LAT, LON, POI_C)
            for _ in range(3)
        ),
        return_exceptions=True,
    )

    completed = [r for r in results if not isinstance(r, Exception) and r.completed]
    conflicts = [r for r in results if isinstance(r, errors.Conflict)]
    assert len(completed) == 1
    assert len(conflicts) == 2
    assert len(albums.created) == 1


@pytest.mark.anyio
async def test_save_navigation_route(
    database: None, manager: RouteLifecycleManager
) -> None:
    route = await manager.save_navigation_route(
        USER_ID,
        POI_D,
        start_location={"latitude": LAT, "longitude": LON},
        end_location={"latitude": 34.07, "longitude": -4.98},
        distance=1.2,
        duration=18,
    )

    assert route.is_completed is True
    assert route.completed_at is not None
    assert route.poi_id == POI_D
    assert route.transport_mode == "foot"

    with pytest.raises(errors.NotFound):
        await manager.save_navigation_route(
            USER_ID,
            POI_GONE,
            start_location={},
            end_location={},
            distance=1.0,
            duration=1.0,
        )


class FailingAlbums(RecordingAlbums):
    async def create_album(self, user_id: int, name: str) -> int:
        raise RuntimeError("album store unavailable")


async def _soft_delete(model: type, pk: int) -> None:
    async with db.get_session() as session:
        row = await session.get(model, pk)
        row.is_deleted = True
        await session.commit()


@pytest.mark.anyio
@pytest.mark.parametrize(
    "start_spec, model, pk",
    [
        ({"circuit_id": MEDINA_WALK}, models.Circuit, MEDINA_WALK),
        (
            {"circuit_id": CUSTOM_TOUR, "is_custom_circuit": True},
            models.CustomCircuit,
            CUSTOM_TOUR,
        ),
    ],
)
async def test_running_route_survives_circuit_deletion(
    database: None,
    manager: RouteLifecycleManager,
    start_spec: dict,
    model: type,
    pk: int,
) -> None:
    route_id = await _start(manager, **start_spec)
    await _soft_delete(model, pk)

    trace = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    assert trace.completed is False

    removal = await manager.remove_poi(USER_ID, route_id, POI_C)
    assert removal.created is True
    restore = await manager.add_poi_back(USER_ID, route_id, POI_C)
    assert restore.restored is True

    # New routes on the deleted circuit are refused.
    with pytest.raises(errors.NotFound):
        await _start(manager, **start_spec)


@pytest.mark.anyio
async def test_failed_album_keeps_trace_completion(
    database: None, points: RecordingPoints
) -> None:
    manager = RouteLifecycleManager(
        CompletionDispatcher(albums=FailingAlbums(), gamification=points)
    )
    route_id = await _start(manager)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)

    result = await manager.record_trace(USER_ID, route_id, LAT, LON, POI_C)

    assert result.completed is True
    assert result.effects.album_id is None
    assert result.effects.points_awarded is not None
    route = await _route(route_id)
    assert route.is_completed is True
    assert route.completed_at is not None


@pytest.mark.anyio
async def test_failed_album_keeps_removal_completion(
    database: None, points: RecordingPoints
) -> None:
    manager = RouteLifecycleManager(
        CompletionDispatcher(albums=FailingAlbums(), gamification=points)
    )
    route_id = await _start(manager)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_A)
    await manager.record_trace(USER_ID, route_id, LAT, LON, POI_B)

    result = await manager.remove_poi(USER_ID, route_id, POI_C)

    assert result.completed is True
    assert result.effects.album_id is None
    route = await _route(route_id)
    assert route.is_completed is True
    assert route.completed_at is not None
