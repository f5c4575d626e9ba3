from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import MappingFormatError


class WidgetKind(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    OTHER = "other"


class StepAction(str, Enum):
    CLICK = "click"
    CLICK_ANY_CONTEXT = "click_any_context"
    WAIT_FOR_APPEARANCE = "wait_for_appearance"
    AI_FILL = "ai_fill"
    DIAGNOSTIC_SCAN = "diagnostic_scan"


SELECTOR_ACTIONS = {StepAction.CLICK, StepAction.CLICK_ANY_CONTEXT, StepAction.WAIT_FOR_APPEARANCE}


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class LogSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    DEBUG = "debug"


@dataclass(frozen=True)
class FieldIdentity:
    primary_id: str = ""
    name_attr: str = ""

    @property
    def key(self) -> str:
        """The identity the oracle is asked to use: the id, or the name when there is no id."""
        return self.primary_id or self.name_attr


@dataclass(frozen=True)
class FieldDescriptor:
    identity: FieldIdentity
    widget_kind: WidgetKind
    input_type: str = ""
    placeholder: str = ""
    label: str = ""
    options: Tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return self.identity.key

    def has_signal(self) -> bool:
        return bool(self.identity.primary_id or self.identity.name_attr or self.label or self.placeholder)

    def to_prompt_field(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.identity.primary_id,
            "name": self.identity.name_attr,
            "type": self.input_type or self.widget_kind.value,
            "widget": self.widget_kind.value,
            "placeholder": self.placeholder,
            "label": self.label,
        }
        if self.widget_kind is WidgetKind.SELECT:
            payload["options"] = list(self.options)
        return payload


@dataclass(frozen=True)
class ContextSchema:
    context_location: str
    captured_at: datetime
    fields: Tuple[FieldDescriptor, ...] = ()

    @classmethod
    def capture(cls, context_location: str, fields: List[FieldDescriptor]) -> "ContextSchema":
        return cls(
            context_location=context_location,
            captured_at=datetime.now(timezone.utc),
            fields=tuple(fields),
        )

    def keys(self) -> List[str]:
        return [descriptor.key for descriptor in self.fields]

    def to_prompt_fields(self) -> List[Dict[str, Any]]:
        return [descriptor.to_prompt_field() for descriptor in self.fields]


FieldMapping = Dict[str, str]


def validate_mapping(raw: Any) -> FieldMapping:
    """Accept only a flat object of string keys to string values."""
    if not isinstance(raw, dict):
        raise MappingFormatError(f"mapping must be an object, got {type(raw).__name__}")
    bad = [key for key, value in raw.items() if not isinstance(key, str) or not isinstance(value, str)]
    if bad:
        raise MappingFormatError(f"mapping values must be strings; offending keys: {bad[:5]}")
    return dict(raw)


@dataclass
class FillOutcome:
    filled: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    # key -> location of the context whose write was recorded
    filled_in: Dict[str, str] = field(default_factory=dict)

    def summary(self) -> str:
        return f"filled={len(self.filled)} failed={len(self.failed)} not_found={len(self.not_found)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filled": list(self.filled),
            "failed": list(self.failed),
            "not_found": list(self.not_found),
            "filled_in": dict(self.filled_in),
        }


class WorkflowStep(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    ordinal: int = Field(ge=1)
    action: StepAction
    description: str = ""
    selector: Optional[str] = None
    context_hint: Optional[str] = None
    post_delay_ms: Optional[int] = Field(default=None, ge=0)
    timeout_ms: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _require_selector(self) -> "WorkflowStep":
        if self.action in SELECTOR_ACTIONS and not (self.selector or "").strip():
            raise ValueError(f"step {self.ordinal}: action {self.action.value} requires a selector")
        return self

    @property
    def title(self) -> str:
        return self.description or f"{self.action.value} (step {self.ordinal})"


class WorkflowConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    version: str
    description: str = ""
    steps: Tuple[WorkflowStep, ...]

    @field_validator("steps")
    @classmethod
    def _ordinals_contiguous(cls, steps: Tuple[WorkflowStep, ...]) -> Tuple[WorkflowStep, ...]:
        expected = list(range(1, len(steps) + 1))
        actual = [step.ordinal for step in steps]
        if actual != expected:
            raise ValueError(f"step ordinals must be 1..{len(steps)} in order, got {actual}")
        return steps


@dataclass
class StepResult:
    success: bool
    message: str
    error_kind: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    diagnostics: List[str] = field(default_factory=list)


@dataclass
class LogEntry:
    timestamp: datetime
    severity: LogSeverity
    message: str


@dataclass
class ExecutionState:
    workflow: WorkflowConfig
    current_ordinal: int = 0
    step_status: List[StepStatus] = field(default_factory=list)
    aborted: bool = False
    run_status: RunStatus = RunStatus.RUNNING

    @classmethod
    def start(cls, workflow: WorkflowConfig) -> "ExecutionState":
        return cls(workflow=workflow, step_status=[StepStatus.PENDING for _ in workflow.steps])

    def status_of(self, ordinal: int) -> StepStatus:
        return self.step_status[ordinal - 1]

    def snapshot(self) -> "ExecutionState":
        # The workflow is frozen, so only the status list needs copying.
        return replace(self, step_status=list(self.step_status))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": self.workflow.name,
            "version": self.workflow.version,
            "current_ordinal": self.current_ordinal,
            "step_status": [status.value for status in self.step_status],
            "aborted": self.aborted,
            "run_status": self.run_status.value,
        }
