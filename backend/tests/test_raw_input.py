"""
Tests for raw_input.py - the structured command protocol.
"""
import json
import pytest
import sys
import os
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from errors import ValidationError
from raw_input import RawInputProcessor, parse

from conftest import NOW


@pytest.fixture
def raw(router):
    return RawInputProcessor(router)


def process(raw, line):
    return json.loads(raw.process(line, NOW))


class TestParse:
    def test_parse_fields(self):
        op, fields = parse("ADD: Title=Buy milk; priority=high;")
        assert op == "ADD"
        assert fields == {"title": "Buy milk", "priority": "high"}

    def test_operation_is_case_insensitive(self):
        assert parse("delete: task_id=1")[0] == "DELETE"

    def test_unknown_operation(self):
        with pytest.raises(ValidationError):
            parse("FLY: to=moon")

    def test_missing_separator(self):
        with pytest.raises(ValidationError):
            parse("ADD title=x")

    def test_part_without_equals(self):
        with pytest.raises(ValidationError):
            parse("ADD: title")


class TestProcess:
    def test_add_defaults(self, raw, store):
        response = process(raw, "ADD: title=Buy milk; tags=home, errands")
        assert response["operation"] == "ADD"
        assert response["result"] == "success"
        task = store.get(response["task"]["id"])
        assert task.start_day == date(2025, 8, 25)
        assert task.repeat_rule.is_repeating is False
        assert task.labels == ["home", "errands"]

    def test_update_and_complete(self, raw, store):
        task_id = process(raw, "ADD: title=Old")["task"]["id"]
        assert process(raw, f"UPDATE: task_id={task_id}; title=New")["result"] == "success"
        assert process(raw, f"COMPLETE: task_id={task_id}")["result"] == "success"
        task = store.get(task_id)
        assert task.title == "New"
        assert task.is_done is True

    def test_delete_and_restore(self, raw, store):
        task_id = process(raw, "ADD: title=Gone")["task"]["id"]
        assert process(raw, f"DELETE: task_id={task_id}")["result"] == "success"
        assert store.get(task_id) is None
        assert process(raw, f"RESTORE: task_id={task_id}")["result"] == "success"
        assert store.get(task_id) is not None

    def test_list(self, raw):
        process(raw, "ADD: title=Today")
        response = process(raw, "LIST: date=2025-08-25")
        assert [t["title"] for t in response["tasks"]] == ["Today"]

    def test_unknown_operation_fails(self, raw):
        response = process(raw, "FLY: to=moon")
        assert response["operation"] == "UNKNOWN"
        assert response["result"] == "fail"
        assert "unknown operation" in response["error"]

    def test_validation_failure_keeps_operation(self, raw, store):
        response = process(raw, "ADD: title=x; priority=urgent")
        assert response["operation"] == "ADD"
        assert response["result"] == "fail"
        assert "priority" in response["error"]
        assert store.list_all() == []

    def test_every_offending_field_is_reported(self, raw):
        response = process(raw, "ADD: priority=urgent; duration_minutes=-5")
        assert response["result"] == "fail"
        assert {v["field"] for v in response["violations"]} == {"title", "priority", "duration_minutes"}
        assert "unknown priority" in response["error"]
        assert "duration_minutes" in response["error"]

    def test_missing_task(self, raw):
        response = process(raw, "DELETE: task_id=missing")
        assert response["result"] == "fail"
        assert response["error"] == "task not found: missing"
