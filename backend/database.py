import sqlite3
import json
import threading
from datetime import date, datetime
from typing import Optional
from contextlib import contextmanager

from errors import NotFound
from models import DeletedTask, Priority, RepeatKind, RepeatRule, Task

DATABASE_PATH = "tasks.db"

TASK_COLUMNS = (
    "id, title, is_done, created_at, start_at, due_at, start_day, due_day, "
    "repeat_rule, repeat_interval, repeat_end, series_id, completed_at, "
    "priority, notes, labels, duration_minutes, reminder_offsets"
)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _index(task: Task) -> dict:
    """Column values for a task, including the day-bucket index columns."""
    return {
        "id": task.id,
        "title": task.title,
        "is_done": int(task.is_done),
        "created_at": task.created_at.isoformat(),
        "start_at": _iso(task.start_at),
        "due_at": _iso(task.due_at),
        "start_day": task.start_day.isoformat(),
        "due_day": _iso(task.due_day),
        "repeat_rule": task.repeat_rule.kind.value,
        "repeat_interval": task.repeat_rule.interval,
        "repeat_end": _iso(task.repeat_end),
        "series_id": task.series_id,
        "completed_at": _iso(task.completed_at),
        "priority": task.priority.value,
        "notes": task.notes,
        "labels": json.dumps(task.labels),
        "duration_minutes": task.duration_minutes,
        "reminder_offsets": json.dumps(task.reminder_offsets),
    }


def _row_to_task(row) -> Task:
    """Convert a database row to a Task model."""
    return Task(
        id=row["id"],
        title=row["title"],
        is_done=bool(row["is_done"]),
        created_at=row["created_at"],
        start_at=row["start_at"],
        due_at=row["due_at"],
        repeat_rule=RepeatRule(kind=RepeatKind(row["repeat_rule"]), interval=row["repeat_interval"]),
        repeat_end=row["repeat_end"],
        series_id=row["series_id"],
        completed_at=row["completed_at"],
        priority=Priority(row["priority"] or "none"),
        notes=row["notes"] or "",
        labels=json.loads(row["labels"] or "[]"),
        duration_minutes=row["duration_minutes"],
        reminder_offsets=json.loads(row["reminder_offsets"] or "[]"),
    )


class TaskStore:
    """
    sqlite-backed task repository.
    Connections are opened per call; inside transaction() every call shares
    one connection and the store lock, so mutation chains are atomic.
    """

    def __init__(self, db_path: str = DATABASE_PATH):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._local = threading.local()

    @contextmanager
    def get_db(self):
        """Context manager for database connections."""
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """Serialize a mutation chain; commit on success, roll back on error."""
        with self._lock:
            if getattr(self._local, "conn", None) is not None:
                yield self._local.conn
                return
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            try:
                yield conn
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._local.conn = None
                conn.close()

    def init_db(self):
        """Initialize database by running Alembic migrations."""
        import subprocess
        import os

        # Run alembic upgrade from the backend directory
        backend_dir = os.path.dirname(os.path.abspath(__file__))
        subprocess.run(
            ["alembic", "-x", f"db_path={os.path.abspath(self.db_path)}", "upgrade", "head"],
            cwd=backend_dir,
            check=True
        )

    def insert(self, task: Task) -> Task:
        values = _index(task)
        placeholders = ", ".join(f":{name}" for name in values)
        with self.get_db() as conn:
            conn.execute(f"INSERT INTO tasks ({TASK_COLUMNS}) VALUES ({placeholders})", values)
        return task

    def save(self, task: Task) -> Task:
        """Write every column of an existing task. Raises NotFound if it is gone."""
        values = _index(task)
        assignments = ", ".join(f"{name} = :{name}" for name in values if name != "id")
        with self.get_db() as conn:
            cursor = conn.execute(f"UPDATE tasks SET {assignments} WHERE id = :id", values)
            if cursor.rowcount == 0:
                raise NotFound(task.id)
        return task

    def get(self, task_id: str) -> Optional[Task]:
        with self.get_db() as conn:
            row = conn.execute(f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row else None

    def require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise NotFound(task_id)
        return task

    def delete(self, task_id: str) -> bool:
        with self.get_db() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount > 0

    def list_all(self) -> list[Task]:
        with self.get_db() as conn:
            rows = conn.execute(
                f"SELECT {TASK_COLUMNS} FROM tasks ORDER BY start_day, created_at"
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def list_for_day(self, day: date) -> list[Task]:
        """Tasks whose start day is `day`, or whose start..due span covers it."""
        key = day.isoformat()
        with self.get_db() as conn:
            rows = conn.execute(
                f"""SELECT {TASK_COLUMNS} FROM tasks
                    WHERE start_day = ?
                       OR (due_day IS NOT NULL AND start_day <= ? AND due_day >= ?)
                    ORDER BY start_at, created_at""",
                (key, key, key)
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def list_series(self, series_id: str) -> list[Task]:
        with self.get_db() as conn:
            rows = conn.execute(
                f"SELECT {TASK_COLUMNS} FROM tasks WHERE series_id = ? ORDER BY start_day",
                (series_id,)
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def series_days(self, series_id: str) -> set[date]:
        with self.get_db() as conn:
            rows = conn.execute("SELECT start_day FROM tasks WHERE series_id = ?", (series_id,)).fetchall()
        return {date.fromisoformat(row["start_day"]) for row in rows}

    def move_to_trash(self, task_id: str, deleted_at: datetime) -> Task:
        """Move a task into the recently-deleted area."""
        with self.transaction() as conn:
            task = self.require(task_id)
            conn.execute(
                "INSERT OR REPLACE INTO deleted_tasks (id, payload, deleted_at) VALUES (?, ?, ?)",
                (task.id, task.model_dump_json(), deleted_at.isoformat())
            )
            self.delete(task_id)
        return task

    def restore(self, task_id: str) -> Task:
        """Move a task out of the recently-deleted area back into tasks."""
        with self.transaction() as conn:
            row = conn.execute("SELECT payload FROM deleted_tasks WHERE id = ?", (task_id,)).fetchone()
            if not row:
                raise NotFound(task_id, where="deleted task")
            task = Task.model_validate_json(row["payload"])
            conn.execute("DELETE FROM deleted_tasks WHERE id = ?", (task_id,))
            if self.get(task_id) is not None:
                self.save(task)
            else:
                self.insert(task)
        return task

    def list_trash(self) -> list[DeletedTask]:
        with self.get_db() as conn:
            rows = conn.execute(
                "SELECT payload, deleted_at FROM deleted_tasks ORDER BY deleted_at DESC"
            ).fetchall()
        return [
            DeletedTask(task=Task.model_validate_json(row["payload"]), deleted_at=row["deleted_at"])
            for row in rows
        ]
