from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class Priority(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RepeatKind(str, Enum):
    NONE = "none"
    EVERY_DAY = "everyDay"
    EVERY_N_DAYS = "everyNDays"


class RepeatRule(BaseModel):
    """Repeat cadence: none, every day, or every n days (n >= 2)."""
    model_config = ConfigDict(frozen=True)

    kind: RepeatKind = RepeatKind.NONE
    interval: Optional[int] = Field(default=None, validate_default=True)

    @field_validator("interval")
    @classmethod
    def _clamp_interval(cls, value, info):
        if info.data.get("kind") == RepeatKind.EVERY_N_DAYS:
            return max(2, value or 2)
        return None

    @classmethod
    def none(cls) -> "RepeatRule":
        return cls()

    @classmethod
    def every_day(cls) -> "RepeatRule":
        return cls(kind=RepeatKind.EVERY_DAY)

    @classmethod
    def every_n_days(cls, n: int) -> "RepeatRule":
        return cls(kind=RepeatKind.EVERY_N_DAYS, interval=n)

    @property
    def is_repeating(self) -> bool:
        return self.kind != RepeatKind.NONE

    @property
    def step(self) -> int:
        """Days between instances; 0 when not repeating."""
        if self.kind == RepeatKind.EVERY_DAY:
            return 1
        if self.kind == RepeatKind.EVERY_N_DAYS:
            return self.interval
        return 0

    def label(self) -> str:
        if self.kind == RepeatKind.EVERY_N_DAYS:
            return f"everyNDays({self.interval})"
        return self.kind.value


class Task(BaseModel):
    id: str
    title: str
    is_done: bool = False
    created_at: datetime
    start_at: Optional[datetime] = None
    due_at: Optional[datetime] = None
    repeat_rule: RepeatRule = Field(default_factory=RepeatRule)
    repeat_end: Optional[date] = None  # last calendar day of the series
    series_id: Optional[str] = None  # shared by siblings, never an owner pointer
    completed_at: Optional[datetime] = None
    priority: Priority = Priority.NONE
    notes: str = ""
    labels: list[str] = Field(default_factory=list)
    duration_minutes: Optional[int] = None
    reminder_offsets: list[int] = Field(default_factory=list)  # minutes before due

    @property
    def start_day(self) -> date:
        """Day bucket of the task: its start day, or creation day without a start."""
        return (self.start_at or self.created_at).date()

    @property
    def due_day(self) -> Optional[date]:
        return self.due_at.date() if self.due_at else None


class DeletedTask(BaseModel):
    task: Task
    deleted_at: datetime


class CommandAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    COMPLETE = "COMPLETE"
    DELETE = "DELETE"
    RESTORE = "RESTORE"
    TRUNCATE = "TRUNCATE"
    LIST = "LIST"
    NO_ACTION = "NO_ACTION"
    ERROR = "ERROR"


class Command(BaseModel):
    """Untyped parse result from the model adapter or the raw protocol."""
    action: CommandAction
    fields: dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
