"""Circuit source: which POIs a route has to visit.

A route targets exactly one of a fixed circuit, a custom circuit or a
single POI. The variant is resolved once when the route is loaded and then
passed around as a :data:`Target` value.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Sequence, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import errors, models


class TargetVariant(str, enum.Enum):
    FIXED = "fixed"
    CUSTOM = "custom"
    SINGLE_POI = "single_poi"


@dataclass(frozen=True)
class FixedCircuit:
    circuit_id: int
    name: str
    is_premium: bool = False


@dataclass(frozen=True)
class CustomCircuitTarget:
    custom_circuit_id: int
    name: str
    poi_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class SinglePoi:
    poi_id: int


Target = Union[FixedCircuit, CustomCircuitTarget, SinglePoi]


@dataclass(frozen=True)
class TargetSpec:
    """What a client asks to start: a circuit id with its kind, or a POI."""

    circuit_id: int | None = None
    is_custom_circuit: bool = False
    poi_id: int | None = None


@dataclass
class CircuitStop:
    poi: models.POI
    order: int
    estimated_time: int | None = None


def get_target_variant(target: Target) -> TargetVariant:
    if isinstance(target, FixedCircuit):
        return TargetVariant.FIXED
    if isinstance(target, CustomCircuitTarget):
        return TargetVariant.CUSTOM
    return TargetVariant.SINGLE_POI


def route_variant(route: models.Route) -> TargetVariant:
    """Variant of a stored route, read from its target columns."""

    if route.circuit_id is not None:
        return TargetVariant.FIXED
    if route.custom_circuit_id is not None:
        return TargetVariant.CUSTOM
    return TargetVariant.SINGLE_POI


def route_target_kwargs(target: Target) -> dict[str, int]:
    """Foreign key column values for a new :class:`models.Route`."""

    if isinstance(target, FixedCircuit):
        return {"circuit_id": target.circuit_id}
    if isinstance(target, CustomCircuitTarget):
        return {"custom_circuit_id": target.custom_circuit_id}
    return {"poi_id": target.poi_id}


def target_label(target: Target) -> str:
    if isinstance(target, SinglePoi):
        return f"POI {target.poi_id}"
    return target.name


def validate_poi_list(poi_ids: Sequence[int]) -> list[int]:
    """Return ``poi_ids`` as a list, rejecting duplicate identifiers."""

    ids = list(poi_ids)
    if len(set(ids)) != len(ids):
        raise errors.ValidationError("POI list contains duplicate identifiers")
    return ids


class CircuitSource:
    """Read access to circuit membership inside the caller's transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def resolve(self, spec: TargetSpec) -> Target:
        """Resolve a start request; soft-deleted targets count as missing."""

        if spec.circuit_id is not None and spec.is_custom_circuit:
            custom = await self._session.scalar(
                select(models.CustomCircuit).where(
                    models.CustomCircuit.id == spec.circuit_id,
                    models.CustomCircuit.is_deleted.is_(False),
                )
            )
            if custom is None:
                raise errors.NotFound("Custom circuit not found")
            return self._custom_target(custom)
        if spec.circuit_id is not None:
            circuit = await self._session.scalar(
                select(models.Circuit).where(
                    models.Circuit.id == spec.circuit_id,
                    models.Circuit.is_deleted.is_(False),
                )
            )
            if circuit is None:
                raise errors.NotFound("Circuit not found")
            return FixedCircuit(circuit.id, circuit.name, bool(circuit.is_premium))
        if spec.poi_id is not None:
            poi = await self._session.scalar(
                select(models.POI).where(
                    models.POI.id == spec.poi_id, models.POI.is_deleted.is_(False)
                )
            )
            if poi is None:
                raise errors.NotFound("POI not found")
            return SinglePoi(poi.id)
        raise errors.ValidationError("circuit_id or poi_id is required")

    async def target_of(self, route: models.Route) -> Target:
        """Resolve the target of an existing route.

        Soft deletion only blocks starting new routes; routes already
        running keep their circuit.
        """

        if route.circuit_id is not None:
            circuit = await self._session.get(models.Circuit, route.circuit_id)
            if circuit is None:
                raise errors.NotFound("Circuit not found for this route")
            return FixedCircuit(circuit.id, circuit.name, bool(circuit.is_premium))
        if route.custom_circuit_id is not None:
            custom = await self._session.get(
                models.CustomCircuit, route.custom_circuit_id
            )
            if custom is None:
                raise errors.NotFound("Custom circuit not found for this route")
            return self._custom_target(custom)
        if route.poi_id is not None:
            return SinglePoi(route.poi_id)
        raise errors.InternalError(f"Route {route.id} has no target")

    async def get_custom_circuit(
        self, custom_circuit_id: int, *, for_update: bool = False
    ) -> models.CustomCircuit:
        stmt = select(models.CustomCircuit).where(
            models.CustomCircuit.id == custom_circuit_id,
            models.CustomCircuit.is_deleted.is_(False),
        )
        if for_update:
            stmt = stmt.with_for_update()
        custom = await self._session.scalar(stmt)
        if custom is None:
            raise errors.NotFound("Custom circuit not found")
        return custom

    async def ordered_pois(self, target: Target) -> list[CircuitStop]:
        """Live POIs of the target in circuit order."""

        if isinstance(target, FixedCircuit):
            rows = await self._session.execute(
                select(models.POI, models.CircuitPOI.order, models.CircuitPOI.estimated_time)
                .join(models.CircuitPOI, models.CircuitPOI.poi_id == models.POI.id)
                .where(
                    models.CircuitPOI.circuit_id == target.circuit_id,
                    models.POI.is_deleted.is_(False),
                )
                .order_by(models.CircuitPOI.order, models.POI.id)
            )
            return [
                CircuitStop(poi=poi, order=order, estimated_time=estimated)
                for poi, order, estimated in rows.all()
            ]

        ids = (
            list(dict.fromkeys(target.poi_ids))
            if isinstance(target, CustomCircuitTarget)
            else [target.poi_id]
        )
        if not ids:
            return []
        pois = await self._session.scalars(
            select(models.POI).where(
                models.POI.id.in_(ids), models.POI.is_deleted.is_(False)
            )
        )
        by_id = {poi.id: poi for poi in pois}
        present = [poi_id for poi_id in ids if poi_id in by_id]
        return [
            CircuitStop(poi=by_id[poi_id], order=index)
            for index, poi_id in enumerate(present, start=1)
        ]

    async def get_original_poi_ids(self, target: Target) -> list[int]:
        return [stop.poi.id for stop in await self.ordered_pois(target)]

    async def is_poi_member(self, target: Target, poi_id: int) -> bool:
        return poi_id in await self.get_original_poi_ids(target)

    @staticmethod
    def get_custom_circuit_poi_ids(custom: models.CustomCircuit) -> list[int]:
        return [int(poi_id) for poi_id in custom.selected_pois or ()]

    async def set_custom_circuit_poi_ids(
        self, custom: models.CustomCircuit, poi_ids: Sequence[int]
    ) -> list[int]:
        custom.selected_pois = validate_poi_list(poi_ids)
        await self._session.flush()
        return list(custom.selected_pois)

    @staticmethod
    def _custom_target(custom: models.CustomCircuit) -> CustomCircuitTarget:
        return CustomCircuitTarget(
            custom_circuit_id=custom.id,
            name=custom.name,
            poi_ids=tuple(int(poi_id) for poi_id in custom.selected_pois or ()),
        )
