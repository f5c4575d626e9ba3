from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, status
from pydantic import BaseModel

from ..agent.browser import BrowserSession
from ..agent.orchestrator import OracleFactory, WorkflowRunner, default_oracle_factory
from ..models import StepStatus, WorkflowConfig
from ..workflows import builtin_workflows, get_builtin_workflow

app = FastAPI(title="autofill-agent")

SessionFactory = Callable[[], Any]


def get_session_factory() -> SessionFactory:
    return BrowserSession


def get_oracle_factory() -> OracleFactory:
    return default_oracle_factory


@dataclass
class ActiveRun:
    workflow: WorkflowConfig
    url: str | None = None
    runner: WorkflowRunner | None = None
    abort_requested: bool = False
    finished: bool = False
    error: str | None = None


_active_run: ActiveRun | None = None


class RunRequest(BaseModel):
    note: str
    workflow: str = "soap_note"
    url: str | None = None
    api_key: str | None = None


class RunStartedResponse(BaseModel):
    workflow: str
    version: str
    status: str


class StepView(BaseModel):
    ordinal: int
    action: str
    description: str
    status: str


class LogView(BaseModel):
    timestamp: datetime
    severity: str
    message: str


class RunStateResponse(BaseModel):
    workflow: str
    version: str
    run_status: str
    current_ordinal: int
    aborted: bool
    finished: bool
    error: str | None = None
    steps: List[StepView]
    logs: List[LogView]


class AbortResponse(BaseModel):
    abort_requested: bool
    run_status: str


class WorkflowSummary(BaseModel):
    key: str
    name: str
    version: str
    description: str
    step_count: int


async def _execute_run(
    active: ActiveRun,
    note: str,
    api_key: str | None,
    session_factory: SessionFactory,
    oracle_factory: OracleFactory,
) -> None:
    try:
        async with session_factory() as session:
            if active.url:
                await session.goto(active.url)
            runner = WorkflowRunner(session.page, oracle_factory=oracle_factory)
            active.runner = runner
            if active.abort_requested:
                runner.request_abort_before_start()
            await runner.start(active.workflow, note, api_key)
    except Exception as exc:  # noqa: BLE001
        logging.exception("api_run_failed workflow=%s", active.workflow.name)
        active.error = repr(exc)
    finally:
        active.finished = True


def _require_active_run() -> ActiveRun:
    if _active_run is None:
        raise HTTPException(status_code=404, detail="No run has been started")
    return _active_run


def _run_status(active: ActiveRun) -> str:
    state = active.runner.snapshot() if active.runner else None
    if state is not None:
        return state.run_status.value
    if active.finished:
        return "failed" if active.error else "completed"
    return "starting"


@app.post("/runs", response_model=RunStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_run(
    payload: RunRequest,
    background_tasks: BackgroundTasks,
    session_factory: SessionFactory = Depends(get_session_factory),
    oracle_factory: OracleFactory = Depends(get_oracle_factory),
):
    """Start a workflow in the background; poll /runs/current for progress."""

    global _active_run

    if _active_run is not None and not _active_run.finished:
        raise HTTPException(status_code=409, detail="A workflow is already running")
    try:
        workflow = get_builtin_workflow(payload.workflow)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc

    _active_run = ActiveRun(workflow=workflow, url=payload.url)
    background_tasks.add_task(
        _execute_run, _active_run, payload.note, payload.api_key, session_factory, oracle_factory
    )
    return RunStartedResponse(workflow=workflow.name, version=workflow.version, status="started")


@app.get("/runs/current", response_model=RunStateResponse)
def get_current_run():
    active = _require_active_run()
    runner = active.runner
    state = runner.snapshot() if runner else None
    steps = [
        StepView(
            ordinal=step.ordinal,
            action=step.action.value,
            description=step.description,
            status=(state.status_of(step.ordinal) if state else StepStatus.PENDING).value,
        )
        for step in active.workflow.steps
    ]
    logs = [
        LogView(timestamp=entry.timestamp, severity=entry.severity.value, message=entry.message)
        for entry in (runner.logs if runner else [])
    ]
    return RunStateResponse(
        workflow=active.workflow.name,
        version=active.workflow.version,
        run_status=_run_status(active),
        current_ordinal=state.current_ordinal if state else 0,
        aborted=state.aborted if state else active.abort_requested,
        finished=active.finished,
        error=active.error,
        steps=steps,
        logs=logs,
    )


@app.post("/runs/current/abort", response_model=AbortResponse)
def abort_current_run():
    active = _require_active_run()
    if active.finished:
        raise HTTPException(status_code=409, detail="The current run has already finished")
    active.abort_requested = True
    if active.runner is not None:
        active.runner.abort()
    return AbortResponse(abort_requested=True, run_status=_run_status(active))


@app.get("/workflows", response_model=List[WorkflowSummary])
def list_workflows():
    return [
        WorkflowSummary(
            key=key,
            name=workflow.name,
            version=workflow.version,
            description=workflow.description,
            step_count=len(workflow.steps),
        )
        for key, workflow in builtin_workflows().items()
    ]
