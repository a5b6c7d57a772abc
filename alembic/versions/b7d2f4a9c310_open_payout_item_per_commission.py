"""one open payout item per commission

Revision ID: b7d2f4a9c310
Revises: a1c3e5f70b21
Create Date: 2026-10-17 15:40:27.104933
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "b7d2f4a9c310"
down_revision: Union[str, Sequence[str], None] = "a1c3e5f70b21"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OPEN_ITEM_PREDICATE = "status IN ('PENDING', 'PROCESSING', 'COMPLETED')"


def upgrade() -> None:
    op.create_index(
        "uq_payout_batch_items_open_commission",
        "payout_batch_items",
        ["commission_id"],
        unique=True,
        sqlite_where=sa.text(OPEN_ITEM_PREDICATE),
        postgresql_where=sa.text(OPEN_ITEM_PREDICATE),
    )


def downgrade() -> None:
    op.drop_index("uq_payout_batch_items_open_commission", table_name="payout_batch_items")
