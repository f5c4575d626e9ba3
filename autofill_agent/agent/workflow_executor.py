from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError, Page

from ..config import settings
from ..errors import Aborted, AutofillError, TargetNotFound, WaitTimeout
from ..models import (
    ExecutionState,
    LogSeverity,
    RunStatus,
    StepAction,
    StepResult,
    StepStatus,
    WorkflowConfig,
    WorkflowStep,
    validate_mapping,
)
from .browser import activate, context_location, gather_contexts, list_contexts, selector_present
from .diagnostics import diagnose_all, render_diagnostics
from .dom_scanner import scan_all
from .field_writer import fill_all
from .oracle import MappingOracle, describe_context_hint

_LOG_LEVELS = {
    LogSeverity.INFO: logging.INFO,
    LogSeverity.SUCCESS: logging.INFO,
    LogSeverity.ERROR: logging.ERROR,
    LogSeverity.DEBUG: logging.DEBUG,
}


@dataclass
class ExecutorCallbacks:
    on_step_start: Optional[Callable[[WorkflowStep], None]] = None
    on_step_complete: Optional[Callable[[WorkflowStep, StepResult], None]] = None
    on_log: Optional[Callable[[str, LogSeverity], None]] = None


class WorkflowExecutor:
    """
    Runs the steps of one workflow in order against one page.

    The executor owns the ExecutionState for the duration of a run; observers get
    copies through `snapshot()` or the callbacks. `abort()` only raises a flag,
    which is read before each step and inside the wait loop.
    """

    def __init__(
        self,
        page: Page,
        note: str,
        oracle: MappingOracle,
        callbacks: ExecutorCallbacks | None = None,
        *,
        poll_interval_ms: int | None = None,
        default_timeout_ms: int | None = None,
        highlight_ms: int | None = None,
    ) -> None:
        self.page = page
        self.note = note
        self.oracle = oracle
        self.callbacks = callbacks or ExecutorCallbacks()
        self.poll_interval_ms = poll_interval_ms if poll_interval_ms is not None else settings.poll_interval_ms
        self.default_timeout_ms = default_timeout_ms if default_timeout_ms is not None else settings.wait_timeout_ms
        self.highlight_ms = highlight_ms
        self._aborted = False
        self._state: ExecutionState | None = None
        self._handlers: Dict[StepAction, Callable[[WorkflowStep], Awaitable[StepResult]]] = {
            StepAction.CLICK: self._execute_click,
            StepAction.CLICK_ANY_CONTEXT: self._execute_click_any_context,
            StepAction.WAIT_FOR_APPEARANCE: self._execute_wait,
            StepAction.AI_FILL: self._execute_ai_fill,
            StepAction.DIAGNOSTIC_SCAN: self._execute_diagnostic_scan,
        }

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        self._aborted = True
        if self._state is not None:
            self._state.aborted = True

    def snapshot(self) -> ExecutionState | None:
        return self._state.snapshot() if self._state is not None else None

    def _log(self, message: str, severity: LogSeverity = LogSeverity.INFO) -> None:
        logging.log(_LOG_LEVELS[severity], "workflow: %s", message)
        if self.callbacks.on_log:
            self.callbacks.on_log(message, severity)

    async def execute_workflow(self, workflow: WorkflowConfig) -> ExecutionState:
        state = ExecutionState.start(workflow)
        state.aborted = self._aborted
        self._state = state
        self._log(f"Starting workflow: {workflow.name} (v{workflow.version}, {len(workflow.steps)} steps)")

        for step in workflow.steps:
            if self._aborted:
                self._skip_from(step.ordinal)
                state.run_status = RunStatus.ABORTED
                self._log("Workflow aborted by user", LogSeverity.ERROR)
                return state.snapshot()

            state.current_ordinal = step.ordinal
            state.step_status[step.ordinal - 1] = StepStatus.RUNNING
            if self.callbacks.on_step_start:
                self.callbacks.on_step_start(step)

            result = await self._run_step(step)

            if result.error_kind == Aborted.kind:
                state.step_status[step.ordinal - 1] = StepStatus.SKIPPED
                self._complete(step, result)
                self._skip_from(step.ordinal + 1)
                state.run_status = RunStatus.ABORTED
                self._log(f"Workflow aborted during step {step.ordinal}", LogSeverity.ERROR)
                return state.snapshot()

            if not result.success:
                state.step_status[step.ordinal - 1] = StepStatus.FAILED
                self._complete(step, result)
                state.run_status = RunStatus.FAILED
                self._log(f"Step {step.ordinal} failed: {result.message}", LogSeverity.ERROR)
                return state.snapshot()

            state.step_status[step.ordinal - 1] = StepStatus.SUCCESS
            self._complete(step, result)

            if step.post_delay_ms:
                await asyncio.sleep(step.post_delay_ms / 1000)

        state.run_status = RunStatus.COMPLETED
        self._log("Workflow completed successfully!", LogSeverity.SUCCESS)
        return state.snapshot()

    def _skip_from(self, ordinal: int) -> None:
        assert self._state is not None
        for index in range(ordinal - 1, len(self._state.step_status)):
            if self._state.step_status[index] in (StepStatus.PENDING, StepStatus.RUNNING):
                self._state.step_status[index] = StepStatus.SKIPPED

    def _complete(self, step: WorkflowStep, result: StepResult) -> None:
        if self.callbacks.on_step_complete:
            self.callbacks.on_step_complete(step, result)

    async def _run_step(self, step: WorkflowStep) -> StepResult:
        self._log(f"Step {step.ordinal}: {step.title}")
        handler = self._handlers[step.action]
        try:
            return await handler(step)
        except AutofillError as exc:
            return StepResult(
                success=False,
                message=str(exc),
                error_kind=exc.kind,
                diagnostics=list(getattr(exc, "diagnostics", [])),
            )
        except Exception as exc:  # noqa: BLE001
            logging.exception("workflow: step %s raised", step.ordinal)
            return StepResult(success=False, message=f"{type(exc).__name__}: {exc}", error_kind="error")

    async def _execute_click(self, step: WorkflowStep) -> StepResult:
        selector = step.selector or ""
        try:
            clicked = await activate(self.page.main_frame, selector)
        except PlaywrightError as exc:
            raise TargetNotFound(f"Element not found: {selector} ({exc.message})") from exc
        if not clicked:
            raise TargetNotFound(f"Element not found: {selector}")
        self._log(f"  Clicked: {selector}", LogSeverity.DEBUG)
        return StepResult(success=True, message="Clicked successfully")

    async def _execute_click_any_context(self, step: WorkflowStep) -> StepResult:
        selector = step.selector or ""
        for index, context in enumerate(list_contexts(self.page)):
            try:
                clicked = await activate(context, selector)
            except PlaywrightError as exc:
                logging.debug("workflow: click_any_context ctx=%s error=%r", index, exc)
                continue
            if clicked:
                location = context_location(context)
                self._log(f"  Clicked in frame {index + 1}: {selector}", LogSeverity.DEBUG)
                return StepResult(success=True, message=f"Clicked in frame {index + 1}", data={"frame": location})
        raise TargetNotFound(f"Element not found in any frame: {selector}")

    async def _selector_anywhere(self, selector: str) -> bool:
        calls = await gather_contexts(
            list_contexts(self.page),
            lambda context: selector_present(context, selector),
            label="wait_for_appearance",
        )
        return any(call.ok and call.result for call in calls)

    async def _execute_wait(self, step: WorkflowStep) -> StepResult:
        selector = step.selector or ""
        timeout_ms = step.timeout_ms or self.default_timeout_ms
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        self._log(f"  Waiting up to {timeout_ms / 1000:g}s for: {selector}", LogSeverity.DEBUG)

        while True:
            if self._aborted:
                raise Aborted(f"Aborted while waiting for: {selector}")
            if await self._selector_anywhere(selector):
                self._log(f"  Element appeared: {selector}", LogSeverity.DEBUG)
                return StepResult(success=True, message="Element found")
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval_ms / 1000, remaining))

        self._log("  Timeout! Collecting interactive elements from every frame...", LogSeverity.DEBUG)
        lines = render_diagnostics(await diagnose_all(self.page))
        for line in lines:
            self._log(f"  {line}", LogSeverity.DEBUG)
        raise WaitTimeout(f"Timeout after {timeout_ms}ms waiting for: {selector}", diagnostics=lines)

    async def _execute_ai_fill(self, step: WorkflowStep) -> StepResult:
        hint_label = describe_context_hint(step.context_hint)
        self._log(f"  Scanning {hint_label} for fields...", LogSeverity.DEBUG)

        schema = await scan_all(self.page)
        if not schema.fields:
            raise TargetNotFound("No form fields found in any frame")
        self._log(f"  Found {len(schema.fields)} fields", LogSeverity.DEBUG)

        self._log(f"  Generating AI mapping for {hint_label}...", LogSeverity.DEBUG)
        mapping = validate_mapping(await self.oracle.generate_mapping(self.note, schema, step.context_hint))
        if not mapping:
            self._log("  AI couldn't map any fields, nothing to fill", LogSeverity.INFO)
            return StepResult(
                success=True,
                message="No fields to fill (AI found no matches)",
                data={"mapping": {}, "outcome": {"filled": [], "failed": [], "not_found": [], "filled_in": {}}},
            )
        self._log(f"  Mapped {len(mapping)} fields", LogSeverity.DEBUG)

        outcome = await fill_all(self.page, mapping, highlight_ms=self.highlight_ms)
        self._log(
            f"  Filled {len(outcome.filled)} fields: {', '.join(outcome.filled) or '-'}",
            LogSeverity.SUCCESS,
        )
        if outcome.failed:
            self._log(f"  Failed to fill: {', '.join(outcome.failed)}", LogSeverity.ERROR)
        if outcome.not_found:
            self._log(f"  Fields not found in any frame: {', '.join(outcome.not_found)}", LogSeverity.ERROR)

        return StepResult(
            success=True,
            message=f"Filled {len(outcome.filled)} fields",
            data={"mapping": mapping, "outcome": outcome.to_dict()},
        )

    async def _execute_diagnostic_scan(self, step: WorkflowStep) -> StepResult:
        self._log("Scanning all frames for interactive elements...")
        frames = await diagnose_all(self.page)
        lines: List[str] = render_diagnostics(frames)
        for line in lines:
            self._log(f"  {line}", LogSeverity.DEBUG)
        return StepResult(
            success=True,
            message=f"Diagnostic scan complete ({len(frames)} frames)",
            data={"frames": len(frames)},
            diagnostics=lines,
        )
