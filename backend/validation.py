"""
Payload validation: untyped field maps in, typed payloads out.

Each action has its own pydantic model; they form a tagged union on `action`
so that code past this boundary never touches untyped dictionaries.
All offending fields are reported at once.
"""
import re
from typing import Annotated, Any, Literal, Optional, Union

import pydantic
from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints, TypeAdapter

from errors import ValidationError
from models import Command, CommandAction, Priority, RepeatKind
from timeparse import parse_absolute, parse_hm

# Repeat-rule vocabulary (lowercased); every_<n>_days is matched separately
REPEAT_ALIASES: dict[str, RepeatKind] = {
    "none": RepeatKind.NONE,
    "不重复": RepeatKind.NONE,
    "everyday": RepeatKind.EVERY_DAY,
    "every_day": RepeatKind.EVERY_DAY,
    "daily": RepeatKind.EVERY_DAY,
    "每天": RepeatKind.EVERY_DAY,
    "everyndays": RepeatKind.EVERY_N_DAYS,
}
EVERY_N_DAYS_RE = re.compile(r"^every_(\d+)_days$")

PRIORITY_ALIASES: dict[str, Priority] = {
    "none": Priority.NONE,
    "无": Priority.NONE,
    "low": Priority.LOW,
    "低": Priority.LOW,
    "medium": Priority.MEDIUM,
    "中": Priority.MEDIUM,
    "high": Priority.HIGH,
    "高": Priority.HIGH,
}


def _absolute_or_none(value):
    if value is None or value == "":
        return None
    return parse_absolute(value)


def _absolute_required(value):
    if value is None or value == "":
        raise ValueError("date is required")
    return parse_absolute(value)


def _clock_or_none(value):
    if value is None or value == "":
        return None
    return parse_hm(value)


def _repeat_name(value):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("repeat_rule must be a string")
    key = value.strip().lower()
    if key in REPEAT_ALIASES or EVERY_N_DAYS_RE.match(key):
        return value.strip()
    raise ValueError(f"unknown repeat rule {value!r}")


def _priority_name(value):
    if value is None or value == "":
        return None
    if not isinstance(value, str) or value.strip().lower() not in PRIORITY_ALIASES:
        raise ValueError(f"unknown priority {value!r}")
    return value.strip()


def _split_list(value):
    """Accept JSON arrays or comma-separated strings."""
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    return value


def _split_ints(value):
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, int) and not isinstance(value, bool):
        return [value]
    return value


AbsoluteDate = Annotated[Any, BeforeValidator(_absolute_or_none)]
RequiredDate = Annotated[Any, BeforeValidator(_absolute_required)]
ClockTime = Annotated[Any, BeforeValidator(_clock_or_none)]
RepeatName = Annotated[str, BeforeValidator(_repeat_name)]
PriorityName = Annotated[Optional[str], BeforeValidator(_priority_name)]
NonEmpty = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
LabelList = Annotated[Optional[list[str]], BeforeValidator(_split_list)]
OffsetList = Annotated[Optional[list[Annotated[int, Field(ge=0)]]], BeforeValidator(_split_ints)]


def _id_field():
    return Field(validation_alias=AliasChoices("id", "task_id"))


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _TaskFields(_Payload):
    """Optional task fields shared by create and update."""
    start_time: ClockTime = None
    enable_start_time: Optional[bool] = None
    due_date: AbsoluteDate = None
    due_time: ClockTime = None
    enable_due_date: Optional[bool] = None
    repeat_interval: Optional[int] = None
    repeat_end_date: AbsoluteDate = Field(default=None, validation_alias=AliasChoices("repeat_end_date", "repeat_end"))
    priority: PriorityName = None
    notes: Optional[str] = None
    labels: LabelList = Field(default=None, validation_alias=AliasChoices("labels", "tags"))
    duration_minutes: Optional[Annotated[int, Field(ge=0)]] = Field(
        default=None, validation_alias=AliasChoices("duration_minutes", "estimated_duration")
    )
    reminder_offsets: OffsetList = Field(
        default=None, validation_alias=AliasChoices("reminder_offsets", "reminder_advance")
    )
    is_reminder: Optional[bool] = None
    reminder_time: AbsoluteDate = None


class CreatePayload(_TaskFields):
    action: Literal["create"] = "create"
    title: NonEmpty
    start_date: RequiredDate
    repeat_rule: RepeatName


class UpdatePayload(_TaskFields):
    action: Literal["update"] = "update"
    id: NonEmpty = _id_field()
    title: Optional[NonEmpty] = None
    start_date: AbsoluteDate = None
    repeat_rule: Optional[RepeatName] = None


class CompletePayload(_Payload):
    action: Literal["complete"] = "complete"
    id: NonEmpty = _id_field()
    completed_on: AbsoluteDate = None


class DeletePayload(_Payload):
    action: Literal["delete"] = "delete"
    id: NonEmpty = _id_field()


class RestorePayload(_Payload):
    action: Literal["restore"] = "restore"
    id: NonEmpty = _id_field()


class TruncatePayload(_Payload):
    action: Literal["truncate"] = "truncate"
    id: NonEmpty = _id_field()
    on_date: RequiredDate = Field(validation_alias=AliasChoices("on_date", "cutoff_date"))


class ListPayload(_Payload):
    action: Literal["list"] = "list"
    date: AbsoluteDate = None


CommandPayload = Annotated[
    Union[CreatePayload, UpdatePayload, CompletePayload, DeletePayload, RestorePayload, TruncatePayload, ListPayload],
    Field(discriminator="action"),
]
_ADAPTER = TypeAdapter(CommandPayload)

ACTION_TAGS = {
    CommandAction.CREATE: "create",
    CommandAction.UPDATE: "update",
    CommandAction.COMPLETE: "complete",
    CommandAction.DELETE: "delete",
    CommandAction.RESTORE: "restore",
    CommandAction.TRUNCATE: "truncate",
    CommandAction.LIST: "list",
}


def _violations(error: pydantic.ValidationError) -> list[dict]:
    violations = []
    for err in error.errors():
        loc = list(err["loc"])
        # Discriminated unions prefix the location with the tag
        if loc and loc[0] in ACTION_TAGS.values():
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) or "payload"
        violations.append({"field": field, "message": err["msg"]})
    return violations


def validate_command(action: Union[CommandAction, str], fields: Optional[dict]) -> CommandPayload:
    """Check a field map for `action` and return its typed payload."""
    try:
        if not isinstance(action, CommandAction):
            action = CommandAction(str(action).upper())
        tag = ACTION_TAGS[action]
    except (KeyError, ValueError):
        raise ValidationError([{"field": "action", "message": f"unsupported action {action!r}"}])
    if fields is not None and not isinstance(fields, dict):
        raise ValidationError([{"field": "payload", "message": "expected an object"}])

    data = {**(fields or {}), "action": tag}
    try:
        return _ADAPTER.validate_python(data)
    except pydantic.ValidationError as e:
        raise ValidationError(_violations(e)) from e


def validate(command: Command) -> CommandPayload:
    return validate_command(command.action, command.fields)