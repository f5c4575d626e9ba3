import asyncio

from playwright.async_api import Error as PlaywrightError

from fakes import FakeElement, FakeFrame, FakeOracle, FakePage

from autofill_agent.agent import workflow_executor
from autofill_agent.agent.workflow_executor import ExecutorCallbacks, WorkflowExecutor
from autofill_agent.errors import MappingFormatError, OracleFailure
from autofill_agent.models import LogSeverity, RunStatus, StepStatus, WorkflowConfig


def _workflow(*steps):
    return WorkflowConfig.model_validate(
        {
            "name": "test",
            "version": "1.0",
            "steps": [{"ordinal": index, **step} for index, step in enumerate(steps, start=1)],
        }
    )


def _executor(page, oracle=None, callbacks=None, **kwargs):
    kwargs.setdefault("poll_interval_ms", 5)
    return WorkflowExecutor(page, "note", oracle or FakeOracle(), callbacks, highlight_ms=0, **kwargs)


class Recorder:
    def __init__(self):
        self.started = []
        self.completed = []
        self.logs = []

    def callbacks(self):
        return ExecutorCallbacks(
            on_step_start=lambda step: self.started.append(step.ordinal),
            on_step_complete=lambda step, result: self.completed.append((step.ordinal, result)),
            on_log=lambda message, severity: self.logs.append((severity, message)),
        )


def _encounter_page():
    main = FakeFrame("https://emr.example.com/main", [FakeElement("input", id="search", title="Search")])
    encounter = FakeFrame(
        "https://emr.example.com/encounter",
        [
            FakeElement("input", id="dob", type="date", label_for="Date of Birth"),
            FakeElement("input", id="mrn", label_for="MRN"),
            FakeElement("textarea", id="reason", label_for="Reason"),
        ],
    )
    return FakePage(main, encounter)


def test_ai_fill_end_to_end_dob_only():
    page = _encounter_page()
    oracle = FakeOracle({"dob": "1990-05-04"})
    recorder = Recorder()
    executor = _executor(page, oracle, recorder.callbacks())

    state = asyncio.run(
        executor.execute_workflow(_workflow({"action": "ai_fill", "context_hint": "encounter_form"}))
    )

    assert state.run_status is RunStatus.COMPLETED
    assert state.step_status == [StepStatus.SUCCESS]
    result = recorder.completed[0][1]
    assert result.success is True
    assert result.data["outcome"]["filled"] == ["dob"]
    assert result.data["outcome"]["failed"] == []
    assert result.data["outcome"]["not_found"] == []
    assert page.children[0].elements[0].value == "1990-05-04"
    assert oracle.calls[0]["context_hint"] == "encounter_form"
    assert oracle.calls[0]["schema"].keys() == ["search", "dob", "mrn", "reason"]
    assert (LogSeverity.SUCCESS, "  Filled 1 fields: dob") in recorder.logs


def test_empty_mapping_is_a_success():
    executor = _executor(_encounter_page(), FakeOracle({}))
    state = asyncio.run(executor.execute_workflow(_workflow({"action": "ai_fill"})))
    assert state.run_status is RunStatus.COMPLETED


def test_ai_fill_without_fields_fails():
    recorder = Recorder()
    executor = _executor(FakePage(FakeFrame()), FakeOracle({"dob": "x"}), recorder.callbacks())
    state = asyncio.run(executor.execute_workflow(_workflow({"action": "ai_fill"})))
    assert state.run_status is RunStatus.FAILED
    assert recorder.completed[0][1].error_kind == "target_not_found"


def test_oracle_errors_fail_the_step_and_halt():
    for error, kind in ((OracleFailure("No text response from AI"), "oracle_failure"),
                        (MappingFormatError("not an object"), "mapping_format_error")):
        recorder = Recorder()
        executor = _executor(_encounter_page(), FakeOracle(error=error), recorder.callbacks())
        state = asyncio.run(
            executor.execute_workflow(_workflow({"action": "ai_fill"}, {"action": "diagnostic_scan"}))
        )
        assert state.run_status is RunStatus.FAILED
        assert state.step_status == [StepStatus.FAILED, StepStatus.PENDING]
        assert recorder.completed[0][1].error_kind == kind
        assert recorder.started == [1]


def test_click_only_looks_in_root_context():
    clicked = []
    child = FakeFrame("https://emr.example.com/child", clickables={"#save": lambda: clicked.append("child")})
    page = FakePage(FakeFrame(), child)
    recorder = Recorder()

    state = asyncio.run(
        _executor(page, callbacks=recorder.callbacks()).execute_workflow(
            _workflow({"action": "click", "selector": "#save"})
        )
    )

    assert state.run_status is RunStatus.FAILED
    assert clicked == []
    assert recorder.completed[0][1].error_kind == "target_not_found"
    assert "#save" in recorder.completed[0][1].message


def test_click_any_context_activates_first_match_only():
    clicked = []
    first = FakeFrame("https://emr.example.com/a", clickables={"#save": lambda: clicked.append("a")})
    second = FakeFrame("https://emr.example.com/b", clickables={"#save": lambda: clicked.append("b")})
    page = FakePage(FakeFrame(), first, second)
    recorder = Recorder()

    state = asyncio.run(
        _executor(page, callbacks=recorder.callbacks()).execute_workflow(
            _workflow({"action": "click_any_context", "selector": "#save", "post_delay_ms": 1})
        )
    )

    assert state.run_status is RunStatus.COMPLETED
    assert clicked == ["a"]
    assert recorder.completed[0][1].data == {"frame": "https://emr.example.com/a"}


def test_wait_succeeds_when_target_appears():
    target = FakeFrame("https://emr.example.com/soap")
    page = FakePage(FakeFrame(), target)

    def appear(count):
        if count == 3:
            target.present.add("#subjective")

    target.on_presence_check = appear
    state = asyncio.run(
        _executor(page).execute_workflow(_workflow({"action": "wait_for_appearance", "selector": "#subjective"}))
    )
    assert state.run_status is RunStatus.COMPLETED
    assert target.presence_checks == 3


def test_wait_timeout_carries_diagnostics():
    main = FakeFrame(
        "https://emr.example.com/main",
        interactive={"buttons": ['BUTTON#saveEncounter.btn.btn-save "Save"'], "links": [], "inputs": [], "selects": []},
    )
    recorder = Recorder()
    state = asyncio.run(
        _executor(FakePage(main), callbacks=recorder.callbacks()).execute_workflow(
            _workflow(
                {"action": "wait_for_appearance", "selector": "#never", "timeout_ms": 30},
                {"action": "diagnostic_scan"},
            )
        )
    )

    assert state.run_status is RunStatus.FAILED
    assert state.step_status == [StepStatus.FAILED, StepStatus.PENDING]
    result = recorder.completed[0][1]
    assert result.error_kind == "timeout"
    assert "30ms" in result.message
    assert result.diagnostics
    assert any("saveEncounter" in line for line in result.diagnostics)


def test_abort_between_steps_skips_the_rest():
    page = FakePage(FakeFrame(clickables={"#a": lambda: None, "#b": lambda: None}))
    executor = _executor(page)
    executor.callbacks = ExecutorCallbacks(on_step_complete=lambda step, result: executor.abort())

    state = asyncio.run(
        executor.execute_workflow(
            _workflow(
                {"action": "click", "selector": "#a"},
                {"action": "click", "selector": "#b"},
                {"action": "diagnostic_scan"},
            )
        )
    )

    assert state.run_status is RunStatus.ABORTED
    assert state.aborted is True
    assert state.step_status == [StepStatus.SUCCESS, StepStatus.SKIPPED, StepStatus.SKIPPED]
    assert page.main_frame.clicks == ["#a"]


def test_abort_inside_wait_loop():
    frame = FakeFrame()
    executor = _executor(FakePage(frame))

    def abort_on_second_poll(count):
        if count == 2:
            executor.abort()

    frame.on_presence_check = abort_on_second_poll
    state = asyncio.run(
        executor.execute_workflow(
            _workflow(
                {"action": "wait_for_appearance", "selector": "#never", "timeout_ms": 5000},
                {"action": "diagnostic_scan"},
            )
        )
    )

    assert state.run_status is RunStatus.ABORTED
    assert state.step_status == [StepStatus.SKIPPED, StepStatus.SKIPPED]
    assert frame.presence_checks == 2


def test_diagnostic_scan_always_succeeds():
    page = FakePage(FakeFrame(), FakeFrame("https://ads.example.com", fail=True))
    recorder = Recorder()
    state = asyncio.run(
        _executor(page, callbacks=recorder.callbacks()).execute_workflow(_workflow({"action": "diagnostic_scan"}))
    )
    assert state.run_status is RunStatus.COMPLETED
    assert recorder.completed[0][1].data == {"frames": 1}


def test_snapshot_is_a_copy():
    page = FakePage(FakeFrame(clickables={"#a": lambda: None}))
    executor = _executor(page)
    snapshots = []
    executor.callbacks = ExecutorCallbacks(on_step_start=lambda step: snapshots.append(executor.snapshot()))

    final = asyncio.run(executor.execute_workflow(_workflow({"action": "click", "selector": "#a"})))

    assert snapshots[0].step_status == [StepStatus.RUNNING]
    assert snapshots[0].run_status is RunStatus.RUNNING
    assert final.step_status == [StepStatus.SUCCESS]
    assert executor.snapshot().step_status == [StepStatus.SUCCESS]


def test_post_delay_only_after_successful_step(monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(workflow_executor.asyncio, "sleep", fake_sleep)
    page = FakePage(FakeFrame(clickables={"#a": lambda: None}))

    state = asyncio.run(
        _executor(page).execute_workflow(
            _workflow(
                {"action": "click", "selector": "#a", "post_delay_ms": 250},
                {"action": "click", "selector": "#missing", "post_delay_ms": 700},
            )
        )
    )

    assert state.step_status == [StepStatus.SUCCESS, StepStatus.FAILED]
    assert delays == [0.25]


class InvalidSelectorFrame(FakeFrame):
    async def evaluate(self, script, arg=None):
        if arg == "#bad[":
            raise PlaywrightError("SyntaxError: '#bad[' is not a valid selector")
        return await super().evaluate(script, arg)


def test_invalid_selector_on_click_is_target_not_found():
    recorder = Recorder()
    state = asyncio.run(
        _executor(FakePage(InvalidSelectorFrame()), callbacks=recorder.callbacks()).execute_workflow(
            _workflow({"action": "click", "selector": "#bad["})
        )
    )

    assert state.run_status is RunStatus.FAILED
    result = recorder.completed[0][1]
    assert result.error_kind == "target_not_found"
    assert "#bad[" in result.message
