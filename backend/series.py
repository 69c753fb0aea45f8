"""
Recurring series: materialization, propagation and truncation.

A series is every task sharing a series_id. Members differ only in their own
start day and completion state; everything in SHARED_FIELDS is kept equal.
Cadence is computed from the origin instance (the earliest member by default).
"""
import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional

from models import RepeatRule, Task
from timeparse import at_time, to_zone

logger = logging.getLogger(__name__)

SHARED_FIELDS = (
    "title",
    "priority",
    "notes",
    "labels",
    "duration_minutes",
    "reminder_offsets",
    "repeat_rule",
    "repeat_end",
)

DEFAULT_HORIZON_DAYS = 365
CADENCE_ORIGINS = ("earliest", "edited")


def shared_values(task: Task) -> dict:
    return {name: getattr(task, name) for name in SHARED_FIELDS}


class SeriesEngine:
    def __init__(self, store, scheduler, horizon_days: int = DEFAULT_HORIZON_DAYS,
                 cadence_origin: str = "earliest", tz: tzinfo = timezone.utc):
        if cadence_origin not in CADENCE_ORIGINS:
            raise ValueError(f"cadence_origin must be one of {CADENCE_ORIGINS}")
        self.store = store
        self.scheduler = scheduler
        self.horizon_days = horizon_days
        self.cadence_origin = cadence_origin
        self.tz = tz

    def earliest_instance(self, series_id: str) -> Optional[Task]:
        members = self.store.list_series(series_id)
        if not members:
            return None
        return min(members, key=lambda t: t.start_day)

    def origin_for(self, edited: Task) -> Optional[Task]:
        """Cadence origin for a series after `edited` changed."""
        if self.cadence_origin == "edited":
            return edited
        return self.earliest_instance(edited.series_id)

    def materialize(self, origin: Task) -> list[Task]:
        """
        Create every missing member from the origin's day up to
        min(repeat_end, origin day + horizon). Days that already have a member
        are skipped, so re-running is a no-op. The origin's day is never recreated.
        """
        if not origin.series_id or not origin.repeat_rule.is_repeating:
            return []

        step = timedelta(days=origin.repeat_rule.step)
        origin_day = origin.start_day
        limit = origin_day + timedelta(days=self.horizon_days)
        if origin.repeat_end is not None:
            limit = min(limit, origin.repeat_end)

        # Wall-clock time in the configured zone, so clones keep it across DST changes
        anchor = to_zone(origin.start_at, self.tz).time() if origin.start_at else time(0, 0)
        existing = self.store.series_days(origin.series_id)
        now = datetime.now(self.tz)
        created = []

        day = origin_day + step
        while day <= limit:
            if day not in existing:
                clone = Task(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    start_at=at_time(day, anchor, self.tz),
                    series_id=origin.series_id,
                    **shared_values(origin),
                )
                self.store.insert(clone)
                self.scheduler.schedule(clone)
                created.append(clone)
            day += step

        if created:
            logger.info("Materialized %d instance(s) of series %s up to %s",
                        len(created), origin.series_id, limit)
        return created

    def propagate(self, series_id: str, values: dict) -> list[Task]:
        """Apply shared-field values to every member; own start and completion stay."""
        values = {name: value for name, value in values.items() if name in SHARED_FIELDS}
        updated = []
        for member in self.store.list_series(series_id):
            changed = member.model_copy(update=values)
            if changed.repeat_rule.is_repeating:
                changed.due_at = None
            if changed != member:
                self.store.save(changed)
                self.scheduler.schedule(changed)
                updated.append(changed)
        logger.debug("Propagated %s to %d member(s) of series %s", sorted(values), len(updated), series_id)
        return updated

    def truncate(self, series_id: str, cutoff: date, vacated: Optional[date] = None) -> list[str]:
        """
        Remove members whose start day is after `cutoff`; the rest end on
        `cutoff`. When `vacated` (the day of an instance just detached from the
        series) is the cutoff itself, the rest end the day before, so later
        materialization cannot refill it.
        """
        end = cutoff - timedelta(days=1) if vacated == cutoff else cutoff
        removed = []
        kept = []
        for member in self.store.list_series(series_id):
            if member.start_day > cutoff:
                self._remove(member)
                removed.append(member.id)
            else:
                kept.append(member)
        for member in kept:
            if member.repeat_rule.is_repeating and member.repeat_end != end:
                member.repeat_end = end
                self.store.save(member)
        logger.info("Truncated series %s at %s, removed %d instance(s)", series_id, cutoff, len(removed))
        return removed

    def reattach(self, task: Task) -> Task:
        """
        Fit a restored member back into its live series: it takes the series'
        shared fields, unless its day is taken or lies past the series end, in
        which case it comes back as a standalone task.
        """
        siblings = [m for m in self.store.list_series(task.series_id) if m.id != task.id]
        if not siblings:
            return task
        origin = min(siblings, key=lambda t: t.start_day)
        day_taken = any(m.start_day == task.start_day for m in siblings)
        past_end = origin.repeat_end is not None and task.start_day > origin.repeat_end
        if day_taken or past_end or not origin.repeat_rule.is_repeating:
            logger.info("Restored %s cannot rejoin series %s, detaching it", task.id, task.series_id)
            task = task.model_copy(update={"series_id": None, "repeat_rule": RepeatRule.none(), "repeat_end": None})
        else:
            task = task.model_copy(update={**shared_values(origin), "due_at": None})
        self.store.save(task)
        return task

    def cleanup_beyond_end(self, origin: Task) -> list[str]:
        if not origin.series_id or origin.repeat_end is None:
            return []
        removed = []
        for member in self.store.list_series(origin.series_id):
            if member.start_day > origin.repeat_end:
                self._remove(member)
                removed.append(member.id)
        return removed

    def realign(self, origin: Task, keep_id: str) -> list[str]:
        """Remove incomplete members that fall off the origin's cadence."""
        step = origin.repeat_rule.step
        if not origin.series_id or step <= 0:
            return []
        removed = []
        for member in self.store.list_series(origin.series_id):
            if member.id in (origin.id, keep_id) or member.is_done:
                continue
            if (member.start_day - origin.start_day).days % step:
                self._remove(member)
                removed.append(member.id)
        if removed:
            logger.info("Removed %d off-cadence instance(s) from series %s", len(removed), origin.series_id)
        return removed

    def _remove(self, task: Task):
        self.store.delete(task.id)
        self.scheduler.cancel(task.id)
