"""
Command normalization: one canonical task state per validated create/update.

The same normalizer serves both the model path and the raw protocol, so tags,
reminder offsets and date handling never diverge between entry points.
"""
import logging
from datetime import date, datetime, time, tzinfo
from typing import Optional, Union

from pydantic import BaseModel, Field

from errors import Inconsistent
from models import Priority, RepeatKind, RepeatRule, Task
from timeparse import at_time, has_time_of_day, to_zone
from validation import EVERY_N_DAYS_RE, PRIORITY_ALIASES, REPEAT_ALIASES, CreatePayload, UpdatePayload

logger = logging.getLogger(__name__)

DEFAULT_DUE_TIME = time(9, 0)
DEFAULT_REMINDER_OFFSET = 10


class TaskPatch(BaseModel):
    """Complete normalized state written by a create or update."""
    title: str
    start_at: Optional[datetime] = None
    due_at: Optional[datetime] = None
    repeat_rule: RepeatRule = Field(default_factory=RepeatRule)
    repeat_end: Optional[date] = None
    priority: Priority = Priority.NONE
    notes: str = ""
    labels: list[str] = Field(default_factory=list)
    duration_minutes: Optional[int] = None
    reminder_offsets: list[int] = Field(default_factory=list)

    def as_fields(self) -> dict:
        """Render back into a field map the validator accepts."""
        fields = {
            "title": self.title,
            "repeat_rule": self.repeat_rule.kind.value,
            "priority": self.priority.value,
            "notes": self.notes,
            "labels": list(self.labels),
            "reminder_offsets": list(self.reminder_offsets),
        }
        if self.start_at is not None:
            fields["start_date"] = self.start_at.date().isoformat()
            if has_time_of_day(self.start_at):
                fields["start_time"] = self.start_at.strftime("%H:%M")
                fields["enable_start_time"] = True
        if self.due_at is not None:
            fields["due_date"] = self.due_at.isoformat()
            fields["enable_due_date"] = True
        else:
            fields["enable_due_date"] = False
        if self.repeat_rule.kind == RepeatKind.EVERY_N_DAYS:
            fields["repeat_interval"] = self.repeat_rule.interval
        if self.repeat_end is not None:
            fields["repeat_end_date"] = self.repeat_end.isoformat()
        if self.duration_minutes is not None:
            fields["duration_minutes"] = self.duration_minutes
        return fields

    def apply_to(self, task: Task) -> Task:
        return task.model_copy(update={name: getattr(self, name) for name in type(self).model_fields})


def parse_repeat(name: Optional[str], interval: Optional[int] = None,
                 fallback: Optional[RepeatRule] = None) -> RepeatRule:
    """Map a repeat name or alias to a rule. Unknown names become none."""
    if name is None:
        return fallback or RepeatRule.none()
    key = name.strip().lower()
    match = EVERY_N_DAYS_RE.match(key)
    if match:
        return RepeatRule.every_n_days(int(match.group(1)))
    kind = REPEAT_ALIASES.get(key)
    if kind is None:
        logger.warning("Unknown repeat rule %r, treating as none", name)
        return RepeatRule.none()
    if kind == RepeatKind.EVERY_N_DAYS:
        if interval is None and fallback is not None and fallback.kind == RepeatKind.EVERY_N_DAYS:
            interval = fallback.interval
        return RepeatRule.every_n_days(interval or 2)
    return RepeatRule(kind=kind)


def parse_priority(name: Optional[str], fallback: Priority = Priority.NONE) -> Priority:
    if name is None:
        return fallback
    return PRIORITY_ALIASES.get(name.strip().lower(), Priority.NONE)


def clean_labels(labels: list[str]) -> list[str]:
    """Strip, drop blanks, deduplicate keeping first-seen order."""
    seen = []
    for label in labels:
        label = label.strip()
        if label and label not in seen:
            seen.append(label)
    return seen


def clean_offsets(offsets: list[int]) -> list[int]:
    return list(dict.fromkeys(offsets))


class Normalizer:
    """Turns validated payloads into a TaskPatch that satisfies the task invariants."""

    def __init__(self, tz: tzinfo, default_due_time: time = DEFAULT_DUE_TIME,
                 default_reminder_offset: int = DEFAULT_REMINDER_OFFSET):
        self.tz = tz
        self.default_due_time = default_due_time
        self.default_reminder_offset = default_reminder_offset

    def normalize_create(self, payload: CreatePayload) -> TaskPatch:
        return self._normalize(payload, None)

    def normalize_update(self, current: Task, payload: UpdatePayload) -> TaskPatch:
        """Omitted fields keep the current task's values."""
        return self._normalize(payload, current)

    def _day(self, value: Union[date, datetime]) -> date:
        if isinstance(value, datetime):
            return to_zone(value, self.tz).date()
        return value

    def _normalize(self, payload: Union[CreatePayload, UpdatePayload], current: Optional[Task]) -> TaskPatch:
        start_at = self._start(payload, current)
        due_at, due_explicit = self._due(payload, current, start_at)

        if payload.repeat_rule is not None:
            rule = parse_repeat(payload.repeat_rule, payload.repeat_interval,
                                current.repeat_rule if current else None)
        elif current is not None:
            rule = current.repeat_rule
            if payload.repeat_interval is not None and rule.kind == RepeatKind.EVERY_N_DAYS:
                rule = RepeatRule.every_n_days(payload.repeat_interval)
        else:
            rule = RepeatRule.none()

        if payload.repeat_end_date is not None:
            repeat_end = self._day(payload.repeat_end_date)
        else:
            repeat_end = current.repeat_end if current else None

        if current is not None and payload.reminder_offsets is None:
            offsets = list(current.reminder_offsets)
        else:
            offsets = clean_offsets(payload.reminder_offsets or [])

        if payload.is_reminder:
            due_at = self._reminder_fire_time(payload, due_at, start_at)
            due_explicit = True
            if not offsets:
                offsets = [self.default_reminder_offset]

        # Due and repeat are exclusive; an explicit due wins over any rule
        if due_at is not None and rule.is_repeating:
            if due_explicit:
                logger.info("Due date set on %r, dropping repeat rule %s",
                            payload.title or (current and current.title), rule.label())
                rule = RepeatRule.none()
            else:
                due_at = None
        if not rule.is_repeating:
            repeat_end = None

        if payload.labels is not None:
            labels = clean_labels(payload.labels)
        else:
            labels = list(current.labels) if current else []

        return TaskPatch(
            title=payload.title if payload.title is not None else current.title,
            start_at=start_at,
            due_at=due_at,
            repeat_rule=rule,
            repeat_end=repeat_end,
            priority=parse_priority(payload.priority, current.priority if current else Priority.NONE),
            notes=payload.notes if payload.notes is not None else (current.notes if current else ""),
            labels=labels,
            duration_minutes=(payload.duration_minutes if payload.duration_minutes is not None
                              else (current.duration_minutes if current else None)),
            reminder_offsets=offsets,
        )

    def _start(self, payload, current: Optional[Task]) -> Optional[datetime]:
        touched = (payload.start_date is not None or payload.start_time is not None
                   or payload.enable_start_time is not None)
        if not touched:
            return current.start_at if current else None

        if payload.start_date is not None:
            day = self._day(payload.start_date)
        elif current.start_at is not None:
            day = to_zone(current.start_at, self.tz).date()
        else:
            day = current.start_day

        if payload.enable_start_time is False:
            hm = None
        else:
            hm = payload.start_time
            if hm is None and payload.enable_start_time:
                hm = self.default_due_time
        if hm is None:
            return at_time(day, time(0, 0), self.tz)
        return at_time(day, hm, self.tz)

    def _due(self, payload, current: Optional[Task], start_at: Optional[datetime]) -> tuple[Optional[datetime], bool]:
        """Returns (due timestamp, whether this payload set it)."""
        if payload.enable_due_date is not None:
            enabled = payload.enable_due_date
        else:
            enabled = payload.due_date is not None or payload.due_time is not None
            if not enabled:
                return (current.due_at if current else None), False
        if not enabled:
            return None, True

        value = payload.due_date
        if isinstance(value, datetime):
            due_at = to_zone(value, self.tz)
            if payload.due_time is not None:
                due_at = at_time(due_at.date(), payload.due_time, self.tz)
            return due_at, True

        if value is not None:
            day = value
        elif current is not None and current.due_at is not None:
            day = to_zone(current.due_at, self.tz).date()
        elif start_at is not None:
            day = to_zone(start_at, self.tz).date()
        else:
            day = current.start_day
        return at_time(day, payload.due_time or self.default_due_time, self.tz), True

    def _reminder_fire_time(self, payload, due_at: Optional[datetime], start_at: Optional[datetime]) -> datetime:
        if payload.reminder_time is not None:
            value = payload.reminder_time
            if isinstance(value, datetime):
                return to_zone(value, self.tz)
            return at_time(value, self.default_due_time, self.tz)
        if due_at is not None:
            return due_at
        if start_at is None:
            raise Inconsistent("reminder needs a due date, a reminder time or a start day")
        anchor = to_zone(start_at, self.tz)
        if has_time_of_day(anchor):
            return anchor
        return at_time(anchor.date(), payload.start_time or self.default_due_time, self.tz)
