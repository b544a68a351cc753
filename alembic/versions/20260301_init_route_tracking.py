"""route tracking tables"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20260301_init_route_tracking"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "pois",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column(
            "is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
    )
    op.create_table(
        "poi_files",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("poi_id", sa.Integer(), sa.ForeignKey("pois.id"), nullable=False),
        sa.Column("file_url", sa.String(length=1024), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
    )
    op.create_index("ix_poi_files_poi_id", "poi_files", ["poi_id"])
    op.create_table(
        "circuits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "is_premium", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
    )
    op.create_table(
        "circuit_pois",
        sa.Column(
            "circuit_id", sa.Integer(), sa.ForeignKey("circuits.id"), primary_key=True
        ),
        sa.Column("poi_id", sa.Integer(), sa.ForeignKey("pois.id"), primary_key=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_time", sa.Integer(), nullable=True),
    )
    op.create_table(
        "custom_circuits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("selected_pois", sa.JSON(), nullable=False),
        sa.Column(
            "is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
    )
    op.create_index("ix_custom_circuits_user_id", "custom_circuits", ["user_id"])
    op.create_table(
        "routes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "circuit_id", sa.Integer(), sa.ForeignKey("circuits.id"), nullable=True
        ),
        sa.Column(
            "custom_circuit_id",
            sa.Integer(),
            sa.ForeignKey("custom_circuits.id"),
            nullable=True,
        ),
        sa.Column("poi_id", sa.Integer(), sa.ForeignKey("pois.id"), nullable=True),
        sa.Column(
            "is_completed",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("poi_name", sa.String(length=255), nullable=True),
        sa.Column("start_location", sa.JSON(), nullable=True),
        sa.Column("end_location", sa.JSON(), nullable=True),
        sa.Column("distance", sa.Float(), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("transport_mode", sa.String(length=50), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=True),
        sa.CheckConstraint(
            "(CASE WHEN circuit_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN custom_circuit_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN poi_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="ck_routes_single_target",
        ),
    )
    op.create_index("ix_routes_user_id", "routes", ["user_id"])
    op.create_table(
        "visited_traces",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("routes.id"), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("poi_id", sa.Integer(), sa.ForeignKey("pois.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_visited_traces_route_id", "visited_traces", ["route_id"])
    op.create_table(
        "removed_traces",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("routes.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("poi_id", sa.Integer(), sa.ForeignKey("pois.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("route_id", "poi_id", name="uq_removed_trace_route_poi"),
    )
    op.create_index("ix_removed_traces_route_id", "removed_traces", ["route_id"])
    op.create_table(
        "albums",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_albums_user_id", "albums", ["user_id"])
    op.create_table(
        "album_media",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("album_id", sa.Integer(), sa.ForeignKey("albums.id"), nullable=False),
        sa.Column(
            "poi_file_id", sa.Integer(), sa.ForeignKey("poi_files.id"), nullable=False
        ),
        sa.UniqueConstraint("album_id", "poi_file_id", name="uq_album_media_file"),
    )
    op.create_index("ix_album_media_album_id", "album_media", ["album_id"])
    op.create_table(
        "user_points",
        sa.Column("user_id", sa.Integer(), primary_key=True),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_table(
        "outbox",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("key", sa.String(), nullable=True),
        sa.Column("payload_json", sa.String(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_table("outbox")
    op.drop_table("user_points")
    op.drop_index("ix_album_media_album_id", table_name="album_media")
    op.drop_table("album_media")
    op.drop_index("ix_albums_user_id", table_name="albums")
    op.drop_table("albums")
    op.drop_index("ix_removed_traces_route_id", table_name="removed_traces")
    op.drop_table("removed_traces")
    op.drop_index("ix_visited_traces_route_id", table_name="visited_traces")
    op.drop_table("visited_traces")
    op.drop_index("ix_routes_user_id", table_name="routes")
    op.drop_table("routes")
    op.drop_index("ix_custom_circuits_user_id", table_name="custom_circuits")
    op.drop_table("custom_circuits")
    op.drop_table("circuit_pois")
    op.drop_table("circuits")
    op.drop_index("ix_poi_files_poi_id", table_name="poi_files")
    op.drop_table("poi_files")
    op.drop_table("pois")
