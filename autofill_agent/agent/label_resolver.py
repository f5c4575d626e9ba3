"""Candidacy predicates and label inference for scanned form elements.

The scanner evaluates one script per frame that returns raw element facts; every
decision about those facts is made here, in plain Python, so it does not depend
on a live browser.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from ..models import WidgetKind

EXCLUDED_INPUT_TYPES = {"hidden", "submit", "button", "reset", "file", "image"}

TEXT_INPUT_TYPES = {
    "text",
    "email",
    "number",
    "tel",
    "url",
    "search",
    "password",
    "date",
    "datetime-local",
    "time",
    "month",
    "week",
}


def clean_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class OptionFacts:
    value: str
    text: str


@dataclass(frozen=True)
class ElementFacts:
    tag: str
    input_type: str = ""
    element_id: str = ""
    name: str = ""
    placeholder: str = ""
    display: str = ""
    visibility: str = ""
    opacity: float = 1.0
    width: float = 0.0
    height: float = 0.0
    label_for: str = ""
    enclosing_label: str = ""
    previous_label: str = ""
    parent_previous_label: str = ""
    previous_cell: str = ""
    aria_label: str = ""
    labelledby_text: str = ""
    title: str = ""
    options: Tuple[OptionFacts, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, raw: dict) -> "ElementFacts":
        tag = (raw.get("tag") or "").lower()
        input_type = (raw.get("type") or "").lower()
        if tag == "input" and not input_type:
            input_type = "text"
        options = tuple(
            OptionFacts(value=str(opt.get("value") or ""), text=clean_text(opt.get("text")))
            for opt in raw.get("options") or []
        )
        return cls(
            tag=tag,
            input_type=input_type,
            element_id=raw.get("id") or "",
            name=raw.get("name") or "",
            placeholder=clean_text(raw.get("placeholder")),
            display=(raw.get("display") or "").lower(),
            visibility=(raw.get("visibility") or "").lower(),
            opacity=_as_float(raw.get("opacity"), default=1.0),
            width=_as_float(raw.get("width")),
            height=_as_float(raw.get("height")),
            label_for=clean_text(raw.get("labelFor")),
            enclosing_label=clean_text(raw.get("enclosingLabel")),
            previous_label=clean_text(raw.get("previousLabel")),
            parent_previous_label=clean_text(raw.get("parentPreviousLabel")),
            previous_cell=clean_text(raw.get("previousCell")),
            aria_label=clean_text(raw.get("ariaLabel")),
            labelledby_text=clean_text(raw.get("labelledbyText")),
            title=clean_text(raw.get("title")),
            options=options,
        )


def is_visible(facts: ElementFacts) -> bool:
    if facts.display == "none" or facts.visibility == "hidden":
        return False
    if facts.opacity <= 0:
        return False
    return facts.width > 0 and facts.height > 0


def is_data_entry(facts: ElementFacts) -> bool:
    if facts.tag == "input":
        return facts.input_type not in EXCLUDED_INPUT_TYPES
    return facts.tag in {"textarea", "select"}


def is_candidate(facts: ElementFacts) -> bool:
    return is_visible(facts) and is_data_entry(facts)


def widget_kind_for(tag: str, input_type: str = "") -> WidgetKind:
    tag = (tag or "").lower()
    input_type = (input_type or "").lower()
    if tag == "textarea":
        return WidgetKind.TEXTAREA
    if tag == "select":
        return WidgetKind.SELECT
    if tag != "input":
        return WidgetKind.OTHER
    if input_type == "checkbox":
        return WidgetKind.CHECKBOX
    if input_type == "radio":
        return WidgetKind.RADIO
    if not input_type or input_type in TEXT_INPUT_TYPES:
        return WidgetKind.TEXT
    return WidgetKind.OTHER


LabelStrategy = Callable[[ElementFacts], Optional[str]]


def _label_for(facts: ElementFacts) -> Optional[str]:
    return facts.label_for or None


def _enclosing_label(facts: ElementFacts) -> Optional[str]:
    return facts.enclosing_label or None


def _previous_label(facts: ElementFacts) -> Optional[str]:
    return facts.previous_label or None


def _parent_previous_label(facts: ElementFacts) -> Optional[str]:
    return facts.parent_previous_label or None


def _previous_cell(facts: ElementFacts) -> Optional[str]:
    return facts.previous_cell or None


def _aria_name(facts: ElementFacts) -> Optional[str]:
    return facts.aria_label or facts.labelledby_text or None


def _title(facts: ElementFacts) -> Optional[str]:
    return facts.title or None


# Evaluated top to bottom; the first non-empty result is the label.
LABEL_STRATEGIES: List[Tuple[str, LabelStrategy]] = [
    ("label_for", _label_for),
    ("enclosing_label", _enclosing_label),
    ("previous_label", _previous_label),
    ("parent_previous_label", _parent_previous_label),
    ("previous_cell", _previous_cell),
    ("aria", _aria_name),
    ("title", _title),
]


def resolve_label_with_source(
    facts: ElementFacts, strategies: Sequence[Tuple[str, LabelStrategy]] = LABEL_STRATEGIES
) -> Tuple[str, Optional[str]]:
    for source, strategy in strategies:
        label = clean_text(strategy(facts))
        if label:
            return label, source
    return "", None


def resolve_label(facts: ElementFacts) -> str:
    return resolve_label_with_source(facts)[0]
