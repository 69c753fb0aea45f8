"""Add deleted_tasks holding table for delete/restore

Revision ID: 002
Revises: 001
Create Date: 2025-08-27

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    # Deleted tasks keep their full serialized state so restore is lossless
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS deleted_tasks (
            id TEXT PRIMARY KEY,
            payload TEXT NOT NULL,
            deleted_at TEXT NOT NULL
        )
    """))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP TABLE IF EXISTS deleted_tasks"))
