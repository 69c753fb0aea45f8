"""
Command router: executes one validated payload against the task store.

Every mutation chain (normalize, write, series effects) runs inside a single
store transaction. Tasks are addressed by id only; titles are never matched.
"""
import logging
import uuid
from datetime import date, datetime, tzinfo
from typing import Callable, Optional

from pydantic import BaseModel, Field

from database import TaskStore
from errors import Inconsistent
from models import CommandAction, RepeatRule, Task
from normalize import Normalizer
from reminders import ReminderScheduler
from series import SeriesEngine, shared_values
from timeparse import to_zone
from validation import (
    CommandPayload,
    CompletePayload,
    CreatePayload,
    DeletePayload,
    ListPayload,
    RestorePayload,
    TruncatePayload,
    UpdatePayload,
)

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    action: CommandAction
    task: Optional[Task] = None
    tasks: list[Task] = Field(default_factory=list)
    created_ids: list[str] = Field(default_factory=list)  # materialized series members
    removed_ids: list[str] = Field(default_factory=list)
    message: str = ""


class CommandRouter:
    def __init__(self, store: TaskStore, series: SeriesEngine, normalizer: Normalizer,
                 scheduler: ReminderScheduler, tz: tzinfo, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.series = series
        self.normalizer = normalizer
        self.scheduler = scheduler
        self.tz = tz
        self.clock = clock or (lambda: datetime.now(tz))

    def now(self) -> datetime:
        return to_zone(self.clock(), self.tz)

    def execute(self, payload: CommandPayload, context_day: Optional[date] = None) -> CommandResult:
        handlers = {
            CreatePayload: self._create,
            UpdatePayload: self._update,
            CompletePayload: self._complete,
            DeletePayload: self._delete,
            RestorePayload: self._restore,
            TruncatePayload: self._truncate,
        }
        if isinstance(payload, ListPayload):
            return self._list(payload, context_day)
        result = handlers[type(payload)](payload)
        logger.info("%s %s: %s", result.action.value, result.task.id if result.task else "-", result.message)
        return result

    def _create(self, payload: CreatePayload) -> CommandResult:
        patch = self.normalizer.normalize_create(payload)
        task = patch.apply_to(Task(id=str(uuid.uuid4()), title=patch.title, created_at=self.now()))
        with self.store.transaction():
            self.store.insert(task)
            self.scheduler.schedule(task)
            created, removed = self._series_effects(task, None)
            task = self.store.require(task.id)
        return CommandResult(action=CommandAction.CREATE, task=task, created_ids=created,
                             removed_ids=removed, message=f"Created {task.title!r}")

    def _update(self, payload: UpdatePayload) -> CommandResult:
        with self.store.transaction():
            current = self.store.require(payload.id)
            patch = self.normalizer.normalize_update(current, payload)
            task = patch.apply_to(current)
            self._check_move(current, task)
            self.store.save(task)
            self.scheduler.schedule(task)
            created, removed = self._series_effects(task, current)
            task = self.store.require(task.id)
        return CommandResult(action=CommandAction.UPDATE, task=task, created_ids=created,
                             removed_ids=removed, message=f"Updated {task.title!r}")

    def _complete(self, payload: CompletePayload) -> CommandResult:
        with self.store.transaction():
            task = self.store.require(payload.id)
            if task.is_done:
                return CommandResult(action=CommandAction.COMPLETE, task=task,
                                     message=f"{task.title!r} was already complete")
            now = self.now()
            completed_on = payload.completed_on
            if completed_on is None:
                completed_at = now
            elif isinstance(completed_on, datetime):
                completed_at = to_zone(completed_on, self.tz)
            else:
                completed_at = datetime.combine(completed_on, now.timetz())
            task.is_done = True
            task.completed_at = completed_at
            self.store.save(task)
            self.scheduler.cancel(task.id)
        return CommandResult(action=CommandAction.COMPLETE, task=task, message=f"Completed {task.title!r}")

    def _delete(self, payload: DeletePayload) -> CommandResult:
        task = self.store.move_to_trash(payload.id, self.now())
        self.scheduler.cancel(task.id)
        return CommandResult(action=CommandAction.DELETE, task=task, message=f"Deleted {task.title!r}")

    def _restore(self, payload: RestorePayload) -> CommandResult:
        with self.store.transaction():
            task = self.store.restore(payload.id)
            if task.series_id:
                task = self.series.reattach(task)
            self.scheduler.schedule(task)
        return CommandResult(action=CommandAction.RESTORE, task=task, message=f"Restored {task.title!r}")

    def _truncate(self, payload: TruncatePayload) -> CommandResult:
        """Make one instance non-repeating and end its series on the given day."""
        on_date = payload.on_date
        cutoff = to_zone(on_date, self.tz).date() if isinstance(on_date, datetime) else on_date
        with self.store.transaction():
            task = self.store.require(payload.id)
            series_id = task.series_id
            task.repeat_rule = RepeatRule.none()
            task.repeat_end = None
            task.series_id = None
            self.store.save(task)
            removed = self.series.truncate(series_id, cutoff, vacated=task.start_day) if series_id else []
        return CommandResult(action=CommandAction.TRUNCATE, task=task, removed_ids=removed,
                             message=f"{task.title!r} no longer repeats after {cutoff.isoformat()}")

    def _list(self, payload: ListPayload, context_day: Optional[date]) -> CommandResult:
        value = payload.date
        if isinstance(value, datetime):
            day = to_zone(value, self.tz).date()
        else:
            day = value or context_day or self.now().date()
        tasks = self.store.list_for_day(day)
        return CommandResult(action=CommandAction.LIST, tasks=tasks,
                             message=f"{len(tasks)} task(s) on {day.isoformat()}")

    def _series_effects(self, task: Task, previous: Optional[Task]) -> tuple[list[str], list[str]]:
        """
        After a write:
        - series member now non-repeating: detach it and truncate the series at its day
        - series member still repeating: propagate, realign on rule change, materialize
        - standalone task newly repeating: it becomes the origin of a new series
        Returns (created ids, removed ids).
        """
        if task.series_id and not task.repeat_rule.is_repeating:
            series_id = task.series_id
            task.series_id = None
            self.store.save(task)
            return [], self.series.truncate(series_id, task.start_day, vacated=task.start_day)

        if task.series_id:
            removed = []
            if previous is None or shared_values(previous) != shared_values(task):
                self.series.propagate(task.series_id, shared_values(task))
            origin = self.series.origin_for(task)
            if previous is not None and previous.repeat_rule != task.repeat_rule:
                removed += self.series.realign(origin, task.id)
            created = self.series.materialize(origin)
            removed += self.series.cleanup_beyond_end(origin)
            return [t.id for t in created], removed

        if task.repeat_rule.is_repeating:
            task.series_id = task.id
            self.store.save(task)
            created = self.series.materialize(task)
            removed = self.series.cleanup_beyond_end(task)
            return [t.id for t in created], removed

        return [], []

    def _check_move(self, current: Task, task: Task):
        """A series member moved to another day must land on a free day inside the series."""
        if not (task.series_id and task.repeat_rule.is_repeating) or task.start_day == current.start_day:
            return
        if task.start_day in self.store.series_days(task.series_id):
            raise Inconsistent(f"series {task.series_id} already has an instance on {task.start_day.isoformat()}")
        if task.repeat_end is not None and task.start_day > task.repeat_end:
            raise Inconsistent(f"{task.start_day.isoformat()} is after the series end {task.repeat_end.isoformat()}")
