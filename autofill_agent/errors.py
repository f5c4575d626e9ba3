"""
Error classes for workflow execution.

Field writer failures never leave the writer; they are folded into the
FillOutcome. Everything below is raised inside a step and caught by the
executor at the step boundary, where it becomes a failed StepResult carrying
`kind` as its error_kind.
"""

from __future__ import annotations


class AutofillError(Exception):
    """Base exception for autofill_agent."""

    kind = "error"


class TargetNotFound(AutofillError):
    """A selector or field identity could not be resolved in any context."""

    kind = "target_not_found"


class WidgetMismatch(AutofillError):
    """
    The value cannot be applied to the resolved widget.

    Examples:
    - No select option matches by value or by text
    - Radio value matches neither the option value nor its id
    - The element is not an input, textarea or select
    """

    kind = "widget_mismatch"


class MappingFormatError(AutofillError):
    """The oracle output is not a flat string-to-string object."""

    kind = "mapping_format_error"


class OracleFailure(AutofillError):
    """The oracle round-trip raised or came back with an empty body."""

    kind = "oracle_failure"


class WaitTimeout(AutofillError):
    """A wait_for_appearance step ran out of budget."""

    kind = "timeout"

    def __init__(self, message: str, diagnostics: list[str] | None = None) -> None:
        super().__init__(message)
        self.diagnostics = list(diagnostics or [])


class Aborted(AutofillError):
    """Cooperative cancellation was observed."""

    kind = "aborted"
