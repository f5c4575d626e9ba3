from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from playwright.async_api import Page

from ..errors import OracleFailure
from ..models import (
    ContextSchema,
    ExecutionState,
    FieldMapping,
    LogEntry,
    LogSeverity,
    StepResult,
    WorkflowConfig,
    WorkflowStep,
)
from .browser import BrowserSession
from .oracle import MappingOracle, create_mapping_oracle
from .workflow_executor import ExecutorCallbacks, WorkflowExecutor

OracleFactory = Callable[[Optional[str]], MappingOracle]

_run_lock: asyncio.Lock | None = None
_run_lock_loop: asyncio.AbstractEventLoop | None = None


def _get_run_lock() -> asyncio.Lock:
    """Ensure only one workflow run drives the browser per event loop.

    Two runs interleaving clicks and fills on the same page would corrupt each
    other. The lock is recreated if a new event loop is used (e.g., when calling
    from the CLI via asyncio.run).
    """

    global _run_lock, _run_lock_loop

    loop = asyncio.get_running_loop()
    if _run_lock is None or _run_lock_loop is not loop:
        _run_lock = asyncio.Lock()
        _run_lock_loop = loop

    return _run_lock


def default_oracle_factory(aux_credential: Optional[str]) -> MappingOracle:
    return create_mapping_oracle(api_key=aux_credential)


class _DeferredOracle:
    """Builds the real oracle on first use, so workflows without ai_fill steps need no credential."""

    def __init__(self, factory: OracleFactory, aux_credential: Optional[str]) -> None:
        self._factory = factory
        self._aux_credential = aux_credential
        self._oracle: MappingOracle | None = None

    async def generate_mapping(
        self, note: str, schema: ContextSchema, context_hint: Optional[str] = None
    ) -> FieldMapping:
        if self._oracle is None:
            try:
                self._oracle = self._factory(self._aux_credential)
            except ValueError as exc:
                raise OracleFailure(str(exc)) from exc
        return await self._oracle.generate_mapping(note, schema, context_hint)


class WorkflowRunner:
    """Control surface for one page: start a workflow, abort it, observe it."""

    def __init__(
        self,
        page: Page,
        oracle_factory: OracleFactory | None = None,
        callbacks: ExecutorCallbacks | None = None,
        *,
        max_log_entries: int = 500,
    ) -> None:
        self.page = page
        self.oracle_factory = oracle_factory or default_oracle_factory
        self.callbacks = callbacks or ExecutorCallbacks()
        self.max_log_entries = max_log_entries
        self.logs: List[LogEntry] = []
        self._executor: WorkflowExecutor | None = None
        self._last_state: ExecutionState | None = None
        self._abort_requested = False
        self._pending = False

    @property
    def running(self) -> bool:
        return self._executor is not None

    def abort(self) -> bool:
        """Request cooperative cancellation; False (and no effect) when nothing is running or waiting to run."""
        if self._executor is not None:
            self._executor.abort()
            return True
        if self._pending:
            self._abort_requested = True
            return True
        return False

    def request_abort_before_start(self) -> None:
        """Make the next `start()` abort before its first step."""
        self._abort_requested = True

    def snapshot(self) -> ExecutionState | None:
        if self._executor is not None:
            return self._executor.snapshot()
        return self._last_state

    def _on_step_start(self, step: WorkflowStep) -> None:
        if self.callbacks.on_step_start:
            self.callbacks.on_step_start(step)

    def _on_step_complete(self, step: WorkflowStep, result: StepResult) -> None:
        if self.callbacks.on_step_complete:
            self.callbacks.on_step_complete(step, result)

    def _on_log(self, message: str, severity: LogSeverity) -> None:
        self.logs.append(LogEntry(timestamp=datetime.now(timezone.utc), severity=severity, message=message))
        if len(self.logs) > self.max_log_entries:
            del self.logs[: len(self.logs) - self.max_log_entries]
        if self.callbacks.on_log:
            self.callbacks.on_log(message, severity)

    async def start(
        self, workflow: WorkflowConfig, note: str, aux_credential: Optional[str] = None
    ) -> ExecutionState:
        run_lock = _get_run_lock()
        self._pending = True

        try:
            async with run_lock:
                return await self._run(workflow, note, aux_credential)
        finally:
            self._pending = False
            self._abort_requested = False

    async def _run(self, workflow: WorkflowConfig, note: str, aux_credential: Optional[str]) -> ExecutionState:
        self.logs = []
        executor = WorkflowExecutor(
            self.page,
            note,
            _DeferredOracle(self.oracle_factory, aux_credential),
            ExecutorCallbacks(
                on_step_start=self._on_step_start,
                on_step_complete=self._on_step_complete,
                on_log=self._on_log,
            ),
        )
        if self._abort_requested:
            executor.abort()
            self._abort_requested = False
        self._executor = executor
        try:
            state = await executor.execute_workflow(workflow)
        finally:
            self._last_state = executor.snapshot()
            self._executor = None
        logging.info(
            "workflow_run: name=%s status=%s steps=%s",
            workflow.name,
            state.run_status.value,
            [status.value for status in state.step_status],
        )
        return state


async def run_workflow_async(
    url: str,
    workflow: WorkflowConfig,
    note: str,
    aux_credential: Optional[str] = None,
    *,
    headless: bool | None = None,
    oracle_factory: OracleFactory | None = None,
) -> ExecutionState:
    """Open a browser session on `url` and run `workflow` against it."""

    logging.info("workflow_run: opening url=%s workflow=%s", url, workflow.name)
    async with BrowserSession(headless=headless) as session:
        await session.goto(url)
        runner = WorkflowRunner(session.page, oracle_factory=oracle_factory)
        return await runner.start(workflow, note, aux_credential)


def run_workflow_blocking(
    url: str,
    workflow: WorkflowConfig,
    note: str,
    aux_credential: Optional[str] = None,
    *,
    headless: bool | None = None,
) -> ExecutionState:
    """Synchronous wrapper for CLI usage."""

    return asyncio.run(run_workflow_async(url, workflow, note, aux_credential, headless=headless))
