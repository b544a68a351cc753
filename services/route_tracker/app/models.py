"""Database models for circuit route tracking."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from src.common.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class POI(Base):
    __tablename__ = "pois"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)

    files = relationship("POIFile", back_populates="poi")


class POIFile(Base):
    __tablename__ = "poi_files"

    id = Column(Integer, primary_key=True)
    poi_id = Column(Integer, ForeignKey("pois.id"), index=True, nullable=False)
    file_url = Column(String(1024), nullable=False)
    type = Column(String(50), nullable=False)

    poi = relationship("POI", back_populates="files")


class Circuit(Base):
    """Admin-curated circuit; its POI membership lives in ``circuit_pois``."""

    __tablename__ = "circuits"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    is_premium = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)

    pois = relationship(
        "CircuitPOI", back_populates="circuit", order_by="CircuitPOI.order"
    )


class CircuitPOI(Base):
    __tablename__ = "circuit_pois"

    circuit_id = Column(Integer, ForeignKey("circuits.id"), primary_key=True)
    poi_id = Column(Integer, ForeignKey("pois.id"), primary_key=True)
    order = Column(Integer, nullable=False, default=0)
    estimated_time = Column(Integer, nullable=True)

    circuit = relationship("Circuit", back_populates="pois")


class CustomCircuit(Base):
    """User-defined circuit storing its POIs as an ordered id list."""

    __tablename__ = "custom_circuits"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    selected_pois = Column(JSON, nullable=False, default=list)
    is_deleted = Column(Boolean, nullable=False, default=False)


class Route(Base):
    __tablename__ = "routes"
    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN circuit_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN custom_circuit_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN poi_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="ck_routes_single_target",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, index=True, nullable=False)
    circuit_id = Column(Integer, ForeignKey("circuits.id"), nullable=True)
    custom_circuit_id = Column(
        Integer, ForeignKey("custom_circuits.id"), nullable=True
    )
    poi_id = Column(Integer, ForeignKey("pois.id"), nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Trip metrics, only filled for standalone navigation routes.
    poi_name = Column(String(255), nullable=True)
    start_location = Column(JSON, nullable=True)
    end_location = Column(JSON, nullable=True)
    distance = Column(Float, nullable=True)
    duration = Column(Float, nullable=True)
    transport_mode = Column(String(50), nullable=True)
    points_earned = Column(Integer, nullable=True)

    visited_traces = relationship(
        "VisitedTrace", back_populates="route", order_by="VisitedTrace.id"
    )
    removed_traces = relationship("RemovedTrace", back_populates="route")


class VisitedTrace(Base):
    """Append-only GPS fix; ``poi_id`` marks a POI visit."""

    __tablename__ = "visited_traces"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey("routes.id"), index=True, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    poi_id = Column(Integer, ForeignKey("pois.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    route = relationship("Route", back_populates="visited_traces")


class RemovedTrace(Base):
    __tablename__ = "removed_traces"
    __table_args__ = (
        UniqueConstraint("route_id", "poi_id", name="uq_removed_trace_route_poi"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey("routes.id"), index=True, nullable=False)
    user_id = Column(Integer, nullable=False)
    poi_id = Column(Integer, ForeignKey("pois.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    route = relationship("Route", back_populates="removed_traces")


class Album(Base):
    __tablename__ = "albums"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    media = relationship("AlbumMedia", back_populates="album")


class AlbumMedia(Base):
    __tablename__ = "album_media"
    __table_args__ = (
        UniqueConstraint("album_id", "poi_file_id", name="uq_album_media_file"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    album_id = Column(Integer, ForeignKey("albums.id"), index=True, nullable=False)
    poi_file_id = Column(Integer, ForeignKey("poi_files.id"), nullable=False)

    album = relationship("Album", back_populates="media")


class UserPoints(Base):
    __tablename__ = "user_points"

    user_id = Column(Integer, primary_key=True)
    total_points = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
