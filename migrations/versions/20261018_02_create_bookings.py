"""create bookings

Revision ID: 20261018_02
Revises: 20261018_01
Create Date: 2026-10-18 09:40:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_02"
down_revision: Union[str, None] = "20261018_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("artisan_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=True),
        sa.Column("service_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("category_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("rejection_reason", sa.String(length=500), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=500), nullable=True),
        sa.Column("cancelled_by_id", sa.Integer(), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("chat_channel_id", sa.String(length=128), nullable=True),
        sa.Column("video_room_name", sa.String(length=128), nullable=True),
        sa.Column("video_room_url", sa.String(length=500), nullable=True),
        sa.Column("modification_new_start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modification_new_end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modification_reason", sa.String(length=300), nullable=True),
        sa.Column("modification_requested_by_id", sa.Integer(), nullable=True),
        sa.Column("modification_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modification_status", sa.String(length=20), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["artisan_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["service_id"], ["artisan_services.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["cancelled_by_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["modification_requested_by_id"], ["users.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("end_at > start_at", name="ck_bookings_interval_positive"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"], unique=False)
    op.create_index("ix_bookings_artisan_id", "bookings", ["artisan_id"], unique=False)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"], unique=False)
    op.create_index("ix_bookings_service_id", "bookings", ["service_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_artisan_interval", "bookings", ["artisan_id", "start_at", "end_at"], unique=False)
    op.create_index("ix_bookings_user_status", "bookings", ["user_id", "status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_bookings_user_status", table_name="bookings")
    op.drop_index("ix_bookings_artisan_interval", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_service_id", table_name="bookings")
    op.drop_index("ix_bookings_user_id", table_name="bookings")
    op.drop_index("ix_bookings_artisan_id", table_name="bookings")
    op.drop_index("ix_bookings_id", table_name="bookings")
    op.drop_table("bookings")
