"""forbid overlapping active bookings per artisan

Revision ID: 20261018_03
Revises: 20261018_02
Create Date: 2026-10-18 10:05:00
"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261018_03"
down_revision: Union[str, None] = "20261018_02"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    # half-open ranges, so back-to-back bookings do not collide
    op.execute(
        """
        ALTER TABLE bookings
        ADD CONSTRAINT ex_bookings_artisan_active_interval
        EXCLUDE USING gist (
            artisan_id WITH =,
            tstzrange(start_at, end_at, '[)') WITH &&
        )
        WHERE (status IN ('pending', 'confirmed'))
        """
    )


def downgrade() -> None:
    op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_bookings_artisan_active_interval")
