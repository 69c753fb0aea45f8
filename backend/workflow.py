"""
Natural-language workflow: utterance -> model -> commands -> (plan | execute).

Direct mode executes every valid command in arrival order, isolating failures
per command. Review mode turns them into Operations held under a plan id until
the caller confirms or discards the plan; a newer plan replaces a pending one.
"""
import json
import logging
import uuid
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from errors import NotFound, RequestFailed, TaskError, Unparseable
from intent import is_likely_task_command
from llm import LLMClient, ToolCall
from models import Command, CommandAction
from prompts import NO_ACTION_TOKEN, TOOL_ACTIONS
from router import CommandResult, CommandRouter
from timeparse import TimeResolver, has_time_of_day, parse_absolute, to_zone
from validation import (
    CommandPayload,
    CompletePayload,
    CreatePayload,
    DeletePayload,
    ListPayload,
    RestorePayload,
    TruncatePayload,
    UpdatePayload,
    validate,
)

logger = logging.getLogger(__name__)

# Day-only date fields (including aliases) and fields that keep their time of day
DAY_FIELDS = ("start_date", "repeat_end_date", "repeat_end", "on_date", "cutoff_date", "completed_on", "date")
TIME_FIELDS = ("due_date", "reminder_time")

ReplyKind = Literal["executed", "planned", "no_action", "empty", "not_actionable", "reply", "request_failed"]


class Operation(BaseModel):
    """A validated command awaiting confirmation."""
    id: str
    kind: str
    summary: str
    detail: str = ""
    payload: CommandPayload
    changes: dict = Field(default_factory=dict)


class CommandOutcome(BaseModel):
    action: CommandAction
    ok: bool
    result: Optional[CommandResult] = None
    error: Optional[dict] = None


class AssistantReply(BaseModel):
    kind: ReplyKind
    message: str = ""
    results: list[CommandOutcome] = Field(default_factory=list)
    plan_id: Optional[str] = None
    operations: list[Operation] = Field(default_factory=list)
    errors: list[dict] = Field(default_factory=list)


def to_command(call: ToolCall) -> Command:
    """Map one tool invocation to an untyped Command."""
    action = TOOL_ACTIONS.get(call.name)
    if action is None:
        return Command(action=CommandAction.ERROR, reason=f"unknown tool {call.name!r}")
    try:
        fields = json.loads(call.arguments or "{}")
    except json.JSONDecodeError as e:
        return Command(action=CommandAction.ERROR, reason=f"arguments for {call.name} are not JSON: {e}")
    if not isinstance(fields, dict):
        return Command(action=CommandAction.ERROR, reason=f"arguments for {call.name} are not an object")
    return Command(action=action, fields=fields)


class Assistant:
    def __init__(self, llm: LLMClient, router: CommandRouter, resolver: TimeResolver, review_mode: bool = False):
        self.llm = llm
        self.router = router
        self.resolver = resolver
        self.review_mode = review_mode
        # One pending plan at a time; proposing a new one supersedes it
        self._plan: Optional[tuple[str, list[Operation]]] = None

    async def handle(self, utterance: str, now: Optional[datetime] = None) -> AssistantReply:
        now = to_zone(now or self.router.now(), self.router.tz)

        if not is_likely_task_command(utterance):
            logger.info("Fast path: %r is not a task request", utterance)
            return AssistantReply(kind="no_action", message="Not a task request")

        try:
            reply = await self.llm.request(utterance, now)
        except RequestFailed as e:
            logger.warning("Model request failed: %s", e.message)
            return AssistantReply(kind="request_failed", message=e.message)

        if not reply.tool_calls:
            text = reply.text.strip()
            if not text:
                return AssistantReply(kind="empty", message="The model returned nothing to do")
            if text == NO_ACTION_TOKEN:
                return AssistantReply(kind="no_action", message="Not a task request")
            return AssistantReply(kind="reply", message=text)

        payloads, errors = self.parse_commands([to_command(call) for call in reply.tool_calls], now)
        if not payloads:
            return AssistantReply(kind="not_actionable", message="No valid command in the model's reply", errors=errors)

        if self.review_mode:
            return self.plan(payloads, errors, now, reply.text)
        results = [self._run(payload, now.date()) for payload in payloads]
        return AssistantReply(kind="executed", message=reply.text or _summarize(results), results=results, errors=errors)

    def parse_commands(self, commands: list[Command], now: datetime) -> tuple[list[CommandPayload], list[dict]]:
        """Validate commands in order; invalid ones are reported, not raised."""
        payloads, errors = [], []
        for index, command in enumerate(commands):
            if command.action in (CommandAction.ERROR, CommandAction.NO_ACTION):
                errors.append({"index": index, "action": command.action.value, "message": command.reason or "no action"})
                continue
            command = self.resolve_dates(command, now)
            try:
                payloads.append(validate(command))
            except TaskError as e:
                logger.warning("Command %d (%s) rejected: %s", index, command.action.value, e.message)
                errors.append({"index": index, "action": command.action.value, **e.to_dict()})
        return payloads, errors

    def resolve_dates(self, command: Command, now: datetime) -> Command:
        """
        Turn natural-language date values into ISO strings before validation.
        A create without a usable start, or a truncate without a usable day,
        falls back to the context day; other unusable dates are dropped.
        """
        fields = dict(command.fields)
        context_day = now.date().isoformat()

        for name in DAY_FIELDS + TIME_FIELDS:
            value = fields.get(name)
            if value is None:
                continue
            if isinstance(value, str) and value.strip():
                try:
                    parse_absolute(value)
                    continue
                except ValueError:
                    pass
            try:
                resolved = self.resolver.resolve(value if isinstance(value, str) else None, now,
                                                 preserve_time=name in TIME_FIELDS)
            except Unparseable:
                if _falls_back_to_context(command.action, name):
                    logger.warning("Cannot resolve %s=%r, using %s", name, value, context_day)
                    fields[name] = context_day
                else:
                    logger.warning("Cannot resolve %s=%r, dropping it", name, value)
                    del fields[name]
                continue
            if name in TIME_FIELDS and has_time_of_day(resolved):
                fields[name] = resolved.isoformat()
            else:
                fields[name] = resolved.date().isoformat()

        if command.action == CommandAction.CREATE and not fields.get("start_date"):
            fields["start_date"] = context_day
        return command.model_copy(update={"fields": fields})

    def plan(self, payloads: list[CommandPayload], errors: list[dict], now: datetime, text: str = "") -> AssistantReply:
        """Build Operations; LIST is read-only and runs right away."""
        listings, operations = [], []
        for payload in payloads:
            if isinstance(payload, ListPayload):
                listings.append(self._run(payload, now.date()))
                continue
            try:
                operations.append(self._operation(payload))
            except TaskError as e:
                errors.append({"action": payload.action, **e.to_dict()})

        if not operations:
            if listings:
                return AssistantReply(kind="executed", message=text or _summarize(listings),
                                      results=listings, errors=errors)
            return AssistantReply(kind="not_actionable", message="No valid command in the model's reply", errors=errors)

        plan_id = str(uuid.uuid4())
        if self._plan is not None:
            logger.info("Plan %s superseded by %s", self._plan[0], plan_id)
        self._plan = (plan_id, operations)
        logger.info("Planned %d operation(s) as %s", len(operations), plan_id)
        return AssistantReply(kind="planned", message=text, plan_id=plan_id, operations=operations,
                              results=listings, errors=errors)

    def confirm(self, plan_id: str, context_day: Optional[date] = None) -> AssistantReply:
        """Execute a stored plan in its original order. A plan runs at most once."""
        operations = self._take(plan_id)
        if operations is None:
            raise NotFound(plan_id, where="plan")
        results = [self._run(op.payload, context_day) for op in operations]
        return AssistantReply(kind="executed", message=_summarize(results), results=results)

    def discard(self, plan_id: str) -> bool:
        return self._take(plan_id) is not None

    def pending(self, plan_id: str) -> Optional[list[Operation]]:
        if self._plan is not None and self._plan[0] == plan_id:
            return self._plan[1]
        return None

    def _take(self, plan_id: str) -> Optional[list[Operation]]:
        operations = self.pending(plan_id)
        if operations is not None:
            self._plan = None
        return operations

    def cancel(self) -> bool:
        return self.llm.cancel_active()

    def _run(self, payload: CommandPayload, context_day: Optional[date]) -> CommandOutcome:
        action = CommandAction(payload.action.upper())
        try:
            result = self.router.execute(payload, context_day)
        except TaskError as e:
            logger.warning("%s failed: %s", action.value, e.message)
            return CommandOutcome(action=action, ok=False, error=e.to_dict())
        return CommandOutcome(action=action, ok=True, result=result)

    def _operation(self, payload: CommandPayload) -> Operation:
        store = self.router.store
        if isinstance(payload, CreatePayload):
            patch = self.router.normalizer.normalize_create(payload)
            changes = patch.model_dump(mode="json")
            detail = "\n".join(f"{name}: {value}" for name, value in _preview(changes).items())
            return _op(payload, f"Create · {patch.title}", detail, changes)

        if isinstance(payload, UpdatePayload):
            current = store.require(payload.id)
            patch = self.router.normalizer.normalize_update(current, payload)
            before = current.model_dump(mode="json")
            changes = {name: value for name, value in patch.model_dump(mode="json").items() if before.get(name) != value}
            detail = "\n".join(f"{name} → {value}" for name, value in changes.items())
            return _op(payload, f"Update · {current.title}", detail, changes)

        if isinstance(payload, CompletePayload):
            task = store.require(payload.id)
            day = payload.completed_on.isoformat() if payload.completed_on else "now"
            return _op(payload, f"Complete · {task.title}", f"completed on {day}", {"is_done": True})

        if isinstance(payload, DeletePayload):
            task = store.require(payload.id)
            return _op(payload, f"Delete · {task.title}", "moved to recently deleted", {"deleted": True})

        if isinstance(payload, RestorePayload):
            return _op(payload, "Restore", payload.id, {"deleted": False})

        if isinstance(payload, TruncatePayload):
            task = store.require(payload.id)
            return _op(payload, f"Stop repeating · {task.title}", f"series ends {payload.on_date.isoformat()}",
                       {"repeat_rule": "none", "repeat_end": payload.on_date.isoformat()})

        raise ValueError(f"no operation for {payload.action}")


def _falls_back_to_context(action: CommandAction, name: str) -> bool:
    return (action == CommandAction.CREATE and name == "start_date") or name in ("on_date", "cutoff_date")


def _preview(changes: dict) -> dict:
    return {name: value for name, value in changes.items() if value not in (None, "", [])}


def _op(payload: CommandPayload, summary: str, detail: str, changes: dict) -> Operation:
    return Operation(id=str(uuid.uuid4()), kind=payload.action, summary=summary, detail=detail,
                     payload=payload, changes=changes)


def _summarize(outcomes: list[CommandOutcome]) -> str:
    lines = []
    for outcome in outcomes:
        if outcome.ok:
            lines.append(outcome.result.message)
        else:
            lines.append(f"{outcome.action.value} failed: {outcome.error['message']}")
    return "\n".join(lines)
