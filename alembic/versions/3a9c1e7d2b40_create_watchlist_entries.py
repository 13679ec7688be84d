"""create watchlist_entries

Revision ID: 3a9c1e7d2b40
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "3a9c1e7d2b40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "watchlist_entries",
        sa.Column("ticker", sa.String(length=20), primary_key=True),
        sa.Column("last_price", sa.String(length=64), nullable=True),
        sa.Column("last_sentiment", sa.String(length=32), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_watchlist_entries_added_at", "watchlist_entries", ["added_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_watchlist_entries_added_at", table_name="watchlist_entries")
    op.drop_table("watchlist_entries")
