from contextlib import asynccontextmanager
from datetime import date, datetime
from types import SimpleNamespace
from typing import Any, Optional

from fastapi import Body, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from dotenv import load_dotenv

from config import Settings
from database import TaskStore
from errors import NotFound, TaskError
from llm import LLMClient
from logging_setup import setup_logging
from models import CommandAction, DeletedTask, Task
from normalize import Normalizer
from raw_input import RawInputProcessor
from reminders import LoggingReminderScheduler
from router import CommandResult, CommandRouter
from series import SeriesEngine
from timeparse import TimeResolver
from validation import validate_command
from workflow import Assistant, AssistantReply

load_dotenv()


class NLCommandRequest(BaseModel):
    text: str
    now: Optional[datetime] = None  # caller's local time; defaults to server time


class RawRequest(BaseModel):
    input: str


def build_services(settings: Settings, store: Optional[TaskStore] = None, llm: Optional[LLMClient] = None,
                   scheduler=None, clock=None) -> SimpleNamespace:
    """Wire every service from one Settings instance."""
    tz = settings.tz
    store = store or TaskStore(settings.database_path)
    scheduler = scheduler or LoggingReminderScheduler()
    series = SeriesEngine(store, scheduler, settings.series_horizon_days, settings.cadence_origin, tz)
    normalizer = Normalizer(tz, settings.due_time, settings.default_reminder_offset)
    router = CommandRouter(store, series, normalizer, scheduler, tz, clock=clock)
    llm = llm or LLMClient(settings.anthropic_api_key, settings.model, settings.max_tokens, settings.request_timeout)
    assistant = Assistant(llm, router, TimeResolver(tz, settings.date_languages), settings.review_mode)
    return SimpleNamespace(
        settings=settings,
        store=store,
        scheduler=scheduler,
        router=router,
        assistant=assistant,
        raw=RawInputProcessor(router),
    )


def create_app(settings: Optional[Settings] = None, **overrides) -> FastAPI:
    settings = settings or Settings.from_env()
    services = build_services(settings, **overrides)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        # Startup
        setup_logging(settings.log_level)
        services.store.init_db()
        yield
        # Shutdown: drop any in-flight model request
        services.assistant.cancel()

    app = FastAPI(lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TaskError)
    async def task_error_handler(_request: Request, exc: TaskError):
        return JSONResponse(status_code=exc.status, content=exc.to_dict())

    _register_task_routes(app)
    _register_nl_routes(app)
    return app


def _services(request: Request) -> SimpleNamespace:
    return request.app.state.services


def _run(request: Request, action: CommandAction, fields: dict) -> CommandResult:
    payload = validate_command(action, fields)
    return _services(request).router.execute(payload)


def _register_task_routes(app: FastAPI):
    @app.get("/tasks")
    def get_tasks(request: Request) -> list[Task]:
        return _services(request).store.list_all()

    @app.get("/tasks/for-date")
    def get_tasks_for_date(request: Request, day: date = Query(alias="date")) -> list[Task]:
        """Tasks starting on `date`, or spanning it up to their due day."""
        return _services(request).store.list_for_day(day)

    @app.get("/tasks/{task_id}")
    def get_task(request: Request, task_id: str) -> Task:
        return _services(request).store.require(task_id)

    @app.post("/tasks")
    def create_task(request: Request, fields: dict[str, Any] = Body(...)) -> CommandResult:
        return _run(request, CommandAction.CREATE, fields)

    @app.patch("/tasks/{task_id}")
    def update_task(request: Request, task_id: str, fields: dict[str, Any] = Body(...)) -> CommandResult:
        return _run(request, CommandAction.UPDATE, {**fields, "id": task_id})

    @app.post("/tasks/{task_id}/complete")
    def complete_task(request: Request, task_id: str, fields: Optional[dict[str, Any]] = Body(default=None)) -> CommandResult:
        return _run(request, CommandAction.COMPLETE, {**(fields or {}), "id": task_id})

    @app.delete("/tasks/{task_id}")
    def delete_task(request: Request, task_id: str) -> dict:
        result = _run(request, CommandAction.DELETE, {"id": task_id})
        return {"status": "deleted", "task": result.task.model_dump(mode="json")}

    @app.post("/tasks/{task_id}/restore")
    def restore_task(request: Request, task_id: str) -> CommandResult:
        return _run(request, CommandAction.RESTORE, {"id": task_id})

    @app.post("/tasks/{task_id}/truncate")
    def truncate_task(request: Request, task_id: str, fields: dict[str, Any] = Body(...)) -> CommandResult:
        return _run(request, CommandAction.TRUNCATE, {**fields, "id": task_id})

    @app.get("/trash")
    def get_trash(request: Request) -> list[DeletedTask]:
        return _services(request).store.list_trash()


def _register_nl_routes(app: FastAPI):
    @app.post("/nl/command")
    async def nl_command(request: Request, body: NLCommandRequest) -> AssistantReply:
        """Process an utterance through Claude and execute or plan the resulting commands."""
        return await _services(request).assistant.handle(body.text, body.now)

    @app.post("/nl/plans/{plan_id}/confirm")
    def confirm_plan(request: Request, plan_id: str) -> AssistantReply:
        return _services(request).assistant.confirm(plan_id)

    @app.delete("/nl/plans/{plan_id}")
    def discard_plan(request: Request, plan_id: str) -> dict:
        if not _services(request).assistant.discard(plan_id):
            raise NotFound(plan_id, where="plan")
        return {"status": "discarded"}

    @app.post("/nl/cancel")
    def cancel_request(request: Request) -> dict:
        return {"canceled": _services(request).assistant.cancel()}

    @app.post("/raw")
    def raw_command(request: Request, body: RawRequest) -> Response:
        content = _services(request).raw.process(body.input)
        return Response(content=content, media_type="application/json")


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
