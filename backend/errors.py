from typing import Optional


class TaskError(Exception):
    """Base for every error the task core raises. `status` maps to HTTP."""
    status = 400

    def __init__(self, message: str, violations: Optional[list[dict]] = None):
        super().__init__(message)
        self.message = message
        self.violations = violations or []

    def to_dict(self) -> dict:
        body = {"status": "fail", "message": self.message}
        if self.violations:
            body["violations"] = self.violations
        return body


class Unparseable(TaskError):
    """A date/time string could not be resolved. Callers pick a fallback."""
    status = 422


class ValidationError(TaskError):
    """Payload shape, enum or required-field violations (all of them)."""
    status = 422

    def __init__(self, violations: list[dict]):
        fields = ", ".join(v["field"] for v in violations)
        super().__init__(f"validation failed: {fields}", violations)


class Inconsistent(TaskError):
    """Normalized state would break a task invariant."""
    status = 409


class NotFound(TaskError):
    status = 404

    def __init__(self, task_id: str, where: str = "task"):
        super().__init__(f"{where} not found: {task_id}")
        self.task_id = task_id


class RequestFailed(TaskError):
    """Language-model call failed, timed out or was canceled."""
    status = 502
