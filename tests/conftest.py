from typing import AsyncIterator, Iterator

import jwt
import pytest

from services.route_tracker.app import deps, models
from src.common import db
from src.common import settings as common_settings
from src.common.settings import Settings

USER_ID = 1
OTHER_USER_ID = 2

# POI ids of the seeded catalog.
POI_A, POI_B, POI_C, POI_D, POI_GONE = 1, 2, 3, 4, 5
MEDINA_WALK = 1
PREMIUM_TOUR = 2
RETIRED_CIRCUIT = 3
CUSTOM_TOUR = 10
DELETED_CUSTOM_TOUR = 11


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def memory_db(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    class TestSettings(Settings):
        postgres_dsn = "sqlite+aiosqlite:///:memory:"
        kafka_brokers = None

    monkeypatch.setattr(common_settings, "settings", TestSettings())
    monkeypatch.setattr(db, "_engine", None)
    monkeypatch.setattr(db, "_sessionmaker", None)
    deps.get_settings.cache_clear()
    deps.get_lifecycle_manager.cache_clear()
    yield
    deps.get_settings.cache_clear()
    deps.get_lifecycle_manager.cache_clear()


@pytest.fixture
async def database() -> AsyncIterator[None]:
    await db.create_all()
    await seed_catalog()
    yield
    await db.dispose_engine()


async def seed_catalog() -> None:
    """Circuits, POIs and gallery files shared by the tests."""

    async with db.get_session() as session:
        session.add_all(
            [
                models.POI(id=POI_A, name="Bab Boujloud", latitude=34.0617, longitude=-4.9836),
                models.POI(id=POI_B, name="Al Quaraouiyine", latitude=34.0646, longitude=-4.9739),
                models.POI(id=POI_C, name="Chouara Tannery", latitude=34.0663, longitude=-4.9707),
                models.POI(id=POI_D, name="Merinid Tombs", latitude=34.0700, longitude=-4.9800),
                models.POI(
                    id=POI_GONE,
                    name="Closed Museum",
                    latitude=34.0600,
                    longitude=-4.9900,
                    is_deleted=True,
                ),
                models.Circuit(id=MEDINA_WALK, name="Medina Walk"),
                models.Circuit(id=PREMIUM_TOUR, name="Premium Tour", is_premium=True),
                models.Circuit(id=RETIRED_CIRCUIT, name="Retired", is_deleted=True),
            ]
        )
        await session.flush()
        session.add_all(
            [
                models.CircuitPOI(circuit_id=MEDINA_WALK, poi_id=POI_A, order=1),
                models.CircuitPOI(circuit_id=MEDINA_WALK, poi_id=POI_B, order=2, estimated_time=30),
                models.CircuitPOI(circuit_id=MEDINA_WALK, poi_id=POI_C, order=3),
                models.CircuitPOI(circuit_id=MEDINA_WALK, poi_id=POI_GONE, order=4),
                models.CircuitPOI(circuit_id=PREMIUM_TOUR, poi_id=POI_D, order=1),
                models.CircuitPOI(circuit_id=RETIRED_CIRCUIT, poi_id=POI_A, order=1),
                models.CustomCircuit(
                    id=CUSTOM_TOUR,
                    user_id=USER_ID,
                    name="My Fez",
                    selected_pois=[POI_C, POI_A, POI_B],
                ),
                models.CustomCircuit(
                    id=DELETED_CUSTOM_TOUR,
                    user_id=USER_ID,
                    name="Old plan",
                    selected_pois=[POI_A],
                    is_deleted=True,
                ),
                models.POIFile(poi_id=POI_A, file_url="a-1.jpg", type="imageAlbum"),
                models.POIFile(poi_id=POI_A, file_url="a-2.jpg", type="imageAlbum"),
                models.POIFile(poi_id=POI_A, file_url="a-cover.jpg", type="image"),
                models.POIFile(poi_id=POI_B, file_url="b-1.jpg", type="imageAlbum"),
                models.POIFile(poi_id=POI_D, file_url="d-1.jpg", type="imageAlbum"),
            ]
        )
        await session.commit()


def make_token(user_id: int = USER_ID, token_type: str = "access") -> str:
    settings = deps.get_settings()
    return jwt.encode(
        {"sub": str(user_id), "type": token_type},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def auth_headers(user_id: int = USER_ID) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}
