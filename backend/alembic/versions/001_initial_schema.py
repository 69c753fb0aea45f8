"""Initial schema - tasks table with day-bucket index columns

Revision ID: 001
Revises: None
Create Date: 2025-08-20

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            is_done INTEGER DEFAULT 0,
            created_at TEXT NOT NULL,
            start_at TEXT,
            due_at TEXT,
            start_day TEXT NOT NULL,
            due_day TEXT,
            repeat_rule TEXT NOT NULL DEFAULT 'none',
            repeat_interval INTEGER,
            repeat_end TEXT,
            series_id TEXT,
            completed_at TEXT,
            priority TEXT DEFAULT 'none',
            notes TEXT DEFAULT '',
            labels TEXT DEFAULT '[]',
            duration_minutes INTEGER,
            reminder_offsets TEXT DEFAULT '[]'
        )
    """))

    # Day-bucket and series lookups
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_tasks_start_day ON tasks (start_day)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_tasks_due_day ON tasks (due_day)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_tasks_series_id ON tasks (series_id)"))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP TABLE IF EXISTS tasks"))
