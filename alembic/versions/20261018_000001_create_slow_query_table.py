"""Create the slow-query capture table.

Statements whose execution time crosses the configured threshold are stored
in ``core__database_slow_query``, deduplicated by their content hash.

Examples
--------
Apply the migration with Alembic:

>>> alembic upgrade head
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the slow-query table and its indexes."""
    op.create_table(
        "core__database_slow_query",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("query", sa.Text(), nullable=False),
        sa.Column("duration", sa.Float(), nullable=False),
        sa.Column("hash", sa.String(length=32), nullable=False),
        sa.Column("inserted_date", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hash"),
    )
    op.create_index(
        "database_slow_query__hash",
        "core__database_slow_query",
        ["hash"],
    )
    op.create_index(
        "database_slow_query__id_hash",
        "core__database_slow_query",
        ["id", "hash"],
    )


def downgrade() -> None:
    """Drop the slow-query table and its indexes."""
    table = "core__database_slow_query"
    op.drop_index("database_slow_query__id_hash", table_name=table)
    op.drop_index("database_slow_query__hash", table_name=table)
    op.drop_table(table)
