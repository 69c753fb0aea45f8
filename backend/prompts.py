from datetime import datetime

from models import CommandAction

# Reserved reply meaning "no task-related intent"; never used for anything else
NO_ACTION_TOKEN = "__NO_ACTION__"

# System prompt for tool-driven task editing
# The model only changes data through tools; titles and notes stay in the user's language
SYSTEM_PROMPT = f"""You are a task management assistant. You may only change data by calling tools.

Language policy:
- Understand requests in any language (Chinese, English, others).
- Do not translate user content: keep title and notes in the user's language.
- Enum values, booleans and field names are always in English.

Capabilities:
- Create, update (title, start, due, repeat, repeat end, priority, notes, labels, duration, reminders), complete, delete and restore tasks.

Date policy:
- When the user says "tomorrow", "on Friday", "next Monday", "tonight at 9", set start_date to that target day (with a time if one was given).
- Only set due_date when the user clearly states a deadline ("due", "by", "until", "截止").
- If both are given without distinction, you may set both to the target date.

Reminders:
- For "remind me", "notify me", "at HH:mm" without a deadline: set due_date to the fire time, set reminder_offsets (default [10] minutes before) and use repeat_rule "none".

Due date and repeat rule are mutually exclusive:
- A repeating task has no due_date; a task with a due_date must use repeat_rule "none".

Repeat rules:
- "none", "everyDay", or "everyNDays" together with repeat_interval (2 or more).
- repeat_end_date is the last day of the series.
- To stop one instance of a series from repeating, call set_non_repeating_and_truncate(id, on_date) to end the series on that day.

Task identification:
- Never modify a task picked by a fuzzy title match. When a task is referenced by name, call list_tasks(date?) first to get its id, then act on the id.
- To delete, call delete_task(id); the task moves to "recently deleted" and can be restored.

Formatting:
- Dates use ISO 8601: YYYY-MM-DD, or YYYY-MM-DDTHH:MM:SS with a zone offset.
- Use as few tool calls as possible and avoid extra prose.

If the request is not a task request or cannot be carried out, call no tools and reply with exactly {NO_ACTION_TOKEN} and nothing else.

After all tool calls, end with one short natural-language summary.
"""

_PRIORITY = {"type": "string", "enum": ["none", "low", "medium", "high"]}
_REPEAT = {"type": "string", "enum": ["none", "everyDay", "everyNDays"]}

_TASK_FIELDS = {
    "title": {"type": "string"},
    "start_date": {"type": "string", "description": "Day the task is planned for."},
    "start_time": {"type": "string", "description": "HH:MM, when the task has a start time."},
    "due_date": {"type": "string", "description": "Deadline; only when the user states one."},
    "due_time": {"type": "string", "description": "HH:MM deadline time."},
    "repeat_rule": _REPEAT,
    "repeat_interval": {"type": "integer", "minimum": 2},
    "repeat_end_date": {"type": "string"},
    "priority": _PRIORITY,
    "notes": {"type": "string"},
    "labels": {"type": "array", "items": {"type": "string"}},
    "duration_minutes": {"type": "integer", "minimum": 0},
    "reminder_offsets": {"type": "array", "items": {"type": "integer", "minimum": 0},
                         "description": "Minutes before the due time."},
    "is_reminder": {"type": "boolean"},
    "reminder_time": {"type": "string"},
}


def _schema(properties: dict, required: list[str]) -> dict:
    return {"type": "object", "properties": properties, "required": required}


# Tool definitions, one per router action
TOOLS = [
    {
        "name": "create_task",
        "description": "Create a task. Due date and repeat rule are mutually exclusive.",
        "input_schema": _schema(_TASK_FIELDS, ["title", "start_date", "repeat_rule"]),
    },
    {
        "name": "update_task",
        "description": "Update task fields by id. Omitted fields are unchanged. Due date and repeat rule are mutually exclusive.",
        "input_schema": _schema({"id": {"type": "string"}, **_TASK_FIELDS}, ["id"]),
    },
    {
        "name": "complete_task",
        "description": "Mark a task complete.",
        "input_schema": _schema({"id": {"type": "string"}, "completed_on": {"type": "string"}}, ["id"]),
    },
    {
        "name": "delete_task",
        "description": "Move a task to recently deleted.",
        "input_schema": _schema({"id": {"type": "string"}}, ["id"]),
    },
    {
        "name": "restore_task",
        "description": "Restore a task from recently deleted.",
        "input_schema": _schema({"id": {"type": "string"}}, ["id"]),
    },
    {
        "name": "set_non_repeating_and_truncate",
        "description": "Make a repeating instance non-repeating and end its series on the given day.",
        "input_schema": _schema({"id": {"type": "string"}, "on_date": {"type": "string"}}, ["id", "on_date"]),
    },
    {
        "name": "list_tasks",
        "description": "List the tasks of a day, to look up ids.",
        "input_schema": _schema({"date": {"type": "string"}}, []),
    },
]

TOOL_ACTIONS = {
    "create_task": CommandAction.CREATE,
    "update_task": CommandAction.UPDATE,
    "complete_task": CommandAction.COMPLETE,
    "delete_task": CommandAction.DELETE,
    "restore_task": CommandAction.RESTORE,
    "set_non_repeating_and_truncate": CommandAction.TRUNCATE,
    "list_tasks": CommandAction.LIST,
}


def build_user_message(utterance: str, now: datetime) -> str:
    """User turn annotated with the caller's date and zone."""
    offset = now.strftime("%z") or "+0000"
    zone = now.tzname() or "UTC"
    return (
        f"Today is {now.strftime('%Y-%m-%d')} ({now.strftime('%A')}), local time {now.strftime('%H:%M')}, "
        f"time zone {zone} (GMT{offset[:3]}:{offset[3:]}).\n\n{utterance}"
    )
