from functools import lru_cache

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic_settings import BaseSettings

from src.common.settings import SettingsMeta

SERVICE_NAME = "route_tracker"


class Settings(BaseSettings, metaclass=SettingsMeta):
    jwt_secret: str = "secret"
    jwt_algorithm: str = "HS256"
    kafka_brokers: str | None = None
    outbox_poll_interval: float = 1.0
    create_schema: bool = True
    run_migrations: bool = False
    album_media_type: str = "imageAlbum"
    circuit_completion_points: int = 100
    premium_circuit_completion_points: int = 200


@lru_cache
def get_settings() -> Settings:
    return Settings()


security = HTTPBearer()


def decode_token(token: str, token_type: str = "access") -> dict:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.PyJWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    if payload.get("type", token_type) != token_type:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )
    return payload


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> int:
    """Caller id from an access token issued by the auth service."""

    payload = decode_token(credentials.credentials, "access")
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        ) from exc


@lru_cache
def get_lifecycle_manager():
    from .dispatcher import (
        CompletionDispatcher,
        SqlAlbumService,
        SqlGamificationService,
    )
    from .lifecycle import RouteLifecycleManager

    settings = get_settings()
    dispatcher = CompletionDispatcher(
        albums=SqlAlbumService(media_type=settings.album_media_type),
        gamification=SqlGamificationService(
            completion_points=settings.circuit_completion_points,
            premium_completion_points=settings.premium_circuit_completion_points,
        ),
    )
    return RouteLifecycleManager(dispatcher)
