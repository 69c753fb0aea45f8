"""
Tests for workflow.py - the natural-language command workflow.
The model is replaced by FakeLLMClient; everything else is real.
"""
import asyncio
import pytest
import sys
import os
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from errors import NotFound, RequestFailed
from llm import ToolCall
from models import Command, CommandAction
from prompts import NO_ACTION_TOKEN
from validation import validate_command
from workflow import Assistant, to_command

from conftest import NOW
from fakes import call


@pytest.fixture
def assistant(fake_llm, router, resolver):
    return Assistant(fake_llm, router, resolver)


@pytest.fixture
def reviewer(fake_llm, router, resolver):
    return Assistant(fake_llm, router, resolver, review_mode=True)


def handle(assistant, text):
    return asyncio.run(assistant.handle(text, NOW))


class TestToCommand:
    def test_known_tool(self):
        command = to_command(call("complete_task", id="abc"))
        assert command.action == CommandAction.COMPLETE
        assert command.fields == {"id": "abc"}

    def test_unknown_tool(self):
        command = to_command(call("launch_rocket"))
        assert command.action == CommandAction.ERROR
        assert "launch_rocket" in command.reason

    def test_arguments_not_json(self):
        command = to_command(ToolCall(name="create_task", arguments="{title:"))
        assert command.action == CommandAction.ERROR

    def test_arguments_not_object(self):
        command = to_command(ToolCall(name="create_task", arguments="[1, 2]"))
        assert command.action == CommandAction.ERROR


class TestHandle:
    def test_short_exclamation_skips_model(self, assistant, fake_llm):
        reply = handle(assistant, "好开心啊!")
        assert reply.kind == "no_action"
        assert fake_llm.requests == []

    def test_buy_milk_creates_task_today(self, assistant, fake_llm, store):
        fake_llm.queue(call("create_task", title="Buy milk", start_date="today", repeat_rule="none"),
                       text="Added Buy milk")

        reply = handle(assistant, "buy milk")

        assert reply.kind == "executed"
        assert reply.message == "Added Buy milk"
        assert [r.ok for r in reply.results] == [True]
        tasks = store.list_all()
        assert [(t.title, t.start_day) for t in tasks] == [("Buy milk", date(2025, 8, 25))]
        assert fake_llm.requests == [("buy milk", NOW)]

    def test_no_action_sentinel(self, assistant, fake_llm):
        fake_llm.queue(text=NO_ACTION_TOKEN)
        reply = handle(assistant, "what a lovely afternoon it has been")
        assert reply.kind == "no_action"

    def test_empty_reply(self, assistant, fake_llm):
        reply = handle(assistant, "add something for tomorrow")
        assert reply.kind == "empty"

    def test_plain_text_reply(self, assistant, fake_llm):
        fake_llm.queue(text="Which task do you mean?")
        reply = handle(assistant, "delete that task")
        assert reply.kind == "reply"
        assert reply.message == "Which task do you mean?"

    def test_request_failed(self, assistant, fake_llm, store):
        fake_llm.error = RequestFailed("request timed out after 20s")
        reply = handle(assistant, "add a task for tomorrow")
        assert reply.kind == "request_failed"
        assert "timed out" in reply.message
        assert store.list_all() == []

    def test_nothing_valid_is_not_actionable(self, assistant, fake_llm, store):
        fake_llm.queue(call("create_task", repeat_rule="none"), call("launch_rocket"))
        reply = handle(assistant, "add a task")
        assert reply.kind == "not_actionable"
        assert len(reply.errors) == 2
        assert store.list_all() == []

    def test_failures_are_isolated_in_order(self, assistant, fake_llm, store):
        fake_llm.queue(
            call("create_task", title="First", start_date="2025-08-25", repeat_rule="none"),
            call("complete_task", id="missing"),
            call("create_task", title="Second", start_date="2025-08-26", repeat_rule="none"),
        )
        reply = handle(assistant, "add two tasks and finish another")

        assert reply.kind == "executed"
        assert [(r.action, r.ok) for r in reply.results] == [
            (CommandAction.CREATE, True),
            (CommandAction.COMPLETE, False),
            (CommandAction.CREATE, True),
        ]
        assert reply.results[1].error["message"] == "task not found: missing"
        assert [t.title for t in store.list_all()] == ["First", "Second"]

    def test_invalid_command_reported_alongside_valid(self, assistant, fake_llm, store):
        fake_llm.queue(
            call("create_task", title="Ok", start_date="2025-08-25", repeat_rule="none"),
            call("create_task", title="Bad", start_date="2025-08-25", repeat_rule="hourly"),
        )
        reply = handle(assistant, "add two tasks")
        assert [t.title for t in store.list_all()] == ["Ok"]
        assert reply.errors[0]["index"] == 1

    def test_list_uses_utterance_day(self, assistant, fake_llm, router):
        router.execute(validate_command(
            CommandAction.CREATE, {"title": "Today", "start_date": "2025-08-25", "repeat_rule": "none"}))
        fake_llm.queue(call("list_tasks"))
        reply = handle(assistant, "what do I have today")
        assert [t.title for t in reply.results[0].result.tasks] == ["Today"]


class TestResolveDates:
    def resolve(self, assistant, action, **fields):
        return assistant.resolve_dates(Command(action=action, fields=fields), NOW).fields

    def test_relative_start(self, assistant):
        fields = self.resolve(assistant, CommandAction.CREATE, start_date="tomorrow")
        assert fields["start_date"] == "2025-08-26"

    def test_absolute_values_untouched(self, assistant):
        fields = self.resolve(assistant, CommandAction.UPDATE, id="x", due_date="2025-08-26T18:00")
        assert fields["due_date"] == "2025-08-26T18:00"

    def test_time_field_without_time_becomes_day(self, assistant):
        fields = self.resolve(assistant, CommandAction.UPDATE, id="x", due_date="tomorrow")
        assert fields["due_date"] == "2025-08-26"

    def test_missing_start_uses_context_day(self, assistant):
        fields = self.resolve(assistant, CommandAction.CREATE, title="x")
        assert fields["start_date"] == "2025-08-25"

    def test_unparseable_start_uses_context_day(self, assistant):
        fields = self.resolve(assistant, CommandAction.CREATE, start_date="zzzz")
        assert fields["start_date"] == "2025-08-25"

    def test_unparseable_cutoff_uses_context_day(self, assistant):
        fields = self.resolve(assistant, CommandAction.TRUNCATE, id="x", on_date="zzzz")
        assert fields["on_date"] == "2025-08-25"

    def test_unparseable_due_is_dropped(self, assistant):
        fields = self.resolve(assistant, CommandAction.UPDATE, id="x", due_date="zzzz")
        assert "due_date" not in fields

    def test_original_command_unchanged(self, assistant):
        command = Command(action=CommandAction.CREATE, fields={"start_date": "tomorrow"})
        assistant.resolve_dates(command, NOW)
        assert command.fields == {"start_date": "tomorrow"}


class TestReviewMode:
    def test_plan_does_not_execute(self, reviewer, fake_llm, store):
        fake_llm.queue(call("create_task", title="Plan me", start_date="2025-08-26", repeat_rule="none"))
        reply = handle(reviewer, "add plan me tomorrow")

        assert reply.kind == "planned"
        assert reply.plan_id
        assert [op.kind for op in reply.operations] == ["create"]
        assert reply.operations[0].summary == "Create · Plan me"
        assert store.list_all() == []

    def test_confirm_executes_once(self, reviewer, fake_llm, store):
        fake_llm.queue(
            call("create_task", title="A", start_date="2025-08-25", repeat_rule="none"),
            call("create_task", title="B", start_date="2025-08-25", repeat_rule="none"),
        )
        plan_id = handle(reviewer, "add a and b").plan_id

        reply = reviewer.confirm(plan_id)
        assert reply.kind == "executed"
        assert [t.title for t in store.list_all()] == ["A", "B"]
        with pytest.raises(NotFound):
            reviewer.confirm(plan_id)

    def test_discard(self, reviewer, fake_llm, store):
        fake_llm.queue(call("create_task", title="Nope", start_date="2025-08-25", repeat_rule="none"))
        plan_id = handle(reviewer, "add nope").plan_id

        assert reviewer.discard(plan_id) is True
        assert reviewer.pending(plan_id) is None
        assert reviewer.discard(plan_id) is False
        with pytest.raises(NotFound):
            reviewer.confirm(plan_id)
        assert store.list_all() == []

    def test_new_plan_supersedes_pending_one(self, reviewer, fake_llm, store):
        fake_llm.queue(call("create_task", title="First", start_date="2025-08-25", repeat_rule="none"))
        fake_llm.queue(call("create_task", title="Second", start_date="2025-08-25", repeat_rule="none"))
        first = handle(reviewer, "add first").plan_id
        second = handle(reviewer, "add second").plan_id

        assert reviewer.pending(first) is None
        with pytest.raises(NotFound):
            reviewer.confirm(first)
        reviewer.confirm(second)
        assert [t.title for t in store.list_all()] == ["Second"]

    def test_update_preview_lists_changes(self, reviewer, fake_llm, router):
        task = router.execute(validate_command(
            CommandAction.CREATE, {"title": "Old", "start_date": "2025-08-25", "repeat_rule": "none"})).task
        fake_llm.queue(call("update_task", id=task.id, title="New"))

        reply = handle(reviewer, "rename old to new")
        operation = reply.operations[0]
        assert operation.changes == {"title": "New"}
        assert operation.summary == "Update · Old"

    def test_listing_runs_immediately(self, reviewer, fake_llm):
        fake_llm.queue(call("list_tasks", date="2025-08-25"))
        reply = handle(reviewer, "show me today")
        assert reply.kind == "executed"
        assert reply.plan_id is None
        assert reply.results[0].action == CommandAction.LIST

    def test_plan_with_unknown_target_reports_error(self, reviewer, fake_llm):
        fake_llm.queue(call("delete_task", id="missing"))
        reply = handle(reviewer, "delete the missing task")
        assert reply.kind == "not_actionable"
        assert reply.errors[0]["message"] == "task not found: missing"

    def test_cancel_delegates_to_client(self, reviewer, fake_llm):
        assert reviewer.cancel() is False
        assert fake_llm.cancel_calls == 1
