"""
Raw structured-command protocol, bypassing the model:

    ADD: title=Buy milk; start_date=2025-08-25; priority=high
    UPDATE: task_id=<id>; title=Buy bread
    DELETE: task_id=<id>

Parsed into the same field maps the model path produces, then validated,
normalized and executed by the same router.
"""
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from errors import TaskError, ValidationError
from models import Command, CommandAction, Task
from router import CommandRouter
from validation import validate

logger = logging.getLogger(__name__)

RAW_OPERATIONS = {
    "ADD": CommandAction.CREATE,
    "UPDATE": CommandAction.UPDATE,
    "DELETE": CommandAction.DELETE,
    "COMPLETE": CommandAction.COMPLETE,
    "RESTORE": CommandAction.RESTORE,
    "TRUNCATE": CommandAction.TRUNCATE,
    "LIST": CommandAction.LIST,
}


class RawResponse(BaseModel):
    operation: str
    result: str  # "success" or "fail"
    task: Optional[Task] = None
    tasks: list[Task] = Field(default_factory=list)
    error: Optional[str] = None
    violations: list[dict] = Field(default_factory=list)


def parse(raw: str) -> tuple[str, dict[str, str]]:
    """Split `OP: key=value; key=value` into (OP, fields). Keys are lowercased."""
    text = raw.strip()
    head, sep, body = text.partition(":")
    op = head.strip().upper()
    if not sep or op not in RAW_OPERATIONS:
        raise ValidationError([{"field": "operation", "message": f"unknown operation {head.strip()!r}"}])

    fields = {}
    for part in body.split(";"):
        part = part.strip()
        if not part:
            continue
        key, eq, value = part.partition("=")
        if not eq or not key.strip():
            raise ValidationError([{"field": part, "message": "expected key=value"}])
        fields[key.strip().lower()] = value.strip()
    return op, fields


class RawInputProcessor:
    def __init__(self, router: CommandRouter):
        self.router = router

    def process(self, raw: str, now: Optional[datetime] = None) -> str:
        """Run one raw line and return the JSON response document."""
        op = "UNKNOWN"
        try:
            op, fields = parse(raw)
            response = self._execute(op, fields, now or self.router.now())
        except TaskError as e:
            logger.warning("Raw %s failed: %s", op, e.message)
            response = RawResponse(operation=op, result="fail", error=_describe(e), violations=e.violations)
        return response.model_dump_json()

    def _execute(self, op: str, fields: dict, now: datetime) -> RawResponse:
        action = RAW_OPERATIONS[op]
        if action == CommandAction.CREATE:
            fields.setdefault("start_date", now.date().isoformat())
            fields.setdefault("repeat_rule", "none")
        payload = validate(Command(action=action, fields=fields))
        result = self.router.execute(payload, now.date())
        return RawResponse(operation=op, result="success", task=result.task, tasks=result.tasks)


def _describe(error: TaskError) -> str:
    """Error text naming every offending field."""
    if not error.violations:
        return error.message
    details = "; ".join(f"{v['field']}: {v['message']}" for v in error.violations)
    return f"{error.message} ({details})"
