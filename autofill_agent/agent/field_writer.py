"""Write values into form widgets across every frame of a page.

Each frame gets two evaluate calls per fill: one probe that resolves every
requested identity and reports what kind of widget it found, and one apply call
that performs the planned mutations and fires the page's own change events.
The choice of what to write (checkbox parsing, option matching, radio matching)
is made in Python between the two calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from playwright.async_api import Page

from ..config import settings
from ..errors import WidgetMismatch
from ..models import FieldMapping, FillOutcome, WidgetKind, validate_mapping
from .browser import DomContext, context_location, gather_contexts, list_contexts
from .label_resolver import OptionFacts, widget_kind_for

CHECKBOX_TRUE_VALUES = {"true", "1", "yes", "on"}

PROBE_TARGETS_SCRIPT = """
(keys) => {
    const resolve = (key) =>
        document.getElementById(key) || document.querySelector(`[name="${CSS.escape(key)}"]`);

    return keys.map((key) => {
        const el = resolve(key);
        if (!el) {
            return { key, found: false };
        }
        const tag = el.tagName.toLowerCase();
        const type = tag === "input" ? (el.type || "text").toLowerCase() : "";
        const name = el.getAttribute("name") || "";
        const probe = {
            key,
            found: true,
            tag,
            type,
            id: el.id || "",
            name,
            value: typeof el.value === "string" ? el.value : "",
            checked: !!el.checked,
            options: [],
            group: [],
        };
        if (tag === "select") {
            probe.options = Array.from(el.options).map((opt) => ({ value: opt.value, text: opt.text }));
        }
        if (type === "radio" && name) {
            probe.group = Array.from(
                document.querySelectorAll(`input[type="radio"][name="${CSS.escape(name)}"]`)
            ).map((radio) => ({ value: radio.value, id: radio.id || "" }));
        }
        return probe;
    });
}
"""

APPLY_WRITES_SCRIPT = """
({ plans, highlightMs }) => {
    const resolve = (key) =>
        document.getElementById(key) || document.querySelector(`[name="${CSS.escape(key)}"]`);

    const notify = (el) => {
        el.dispatchEvent(new FocusEvent("focus", { bubbles: true }));
        el.dispatchEvent(new InputEvent("input", { bubbles: true, cancelable: true, inputType: "insertText" }));
        el.dispatchEvent(new Event("change", { bubbles: true }));
        el.dispatchEvent(new FocusEvent("blur", { bubbles: true }));
    };

    const highlight = (el) => {
        const previousOutline = el.style.outline;
        const previousOffset = el.style.outlineOffset;
        el.style.outline = "2px solid #00d4aa";
        el.style.outlineOffset = "1px";
        setTimeout(() => {
            el.style.outline = previousOutline;
            el.style.outlineOffset = previousOffset;
        }, highlightMs);
    };

    return plans.map((plan) => {
        try {
            let el = resolve(plan.key);
            if (el && plan.radioIndex !== null && plan.radioIndex !== undefined) {
                const name = el.getAttribute("name") || "";
                const group = document.querySelectorAll(`input[type="radio"][name="${CSS.escape(name)}"]`);
                el = group[plan.radioIndex] || null;
            }
            if (!el) {
                return { key: plan.key, ok: false, error: "target disappeared before write" };
            }
            if (typeof el.focus === "function") {
                el.focus();
            }
            el[plan.prop] = plan.value;
            if (plan.notify) {
                notify(el);
            }
            highlight(el);
            return { key: plan.key, ok: true };
        } catch (err) {
            return { key: plan.key, ok: false, error: String(err) };
        }
    });
}
"""


def parse_checkbox(value: str) -> bool:
    return (value or "").strip().lower() in CHECKBOX_TRUE_VALUES


@dataclass(frozen=True)
class TargetProbe:
    key: str
    found: bool
    tag: str = ""
    input_type: str = ""
    element_id: str = ""
    name: str = ""
    value: str = ""
    checked: bool = False
    options: Tuple[OptionFacts, ...] = ()
    group: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def from_dict(cls, raw: dict) -> "TargetProbe":
        return cls(
            key=str(raw.get("key") or ""),
            found=bool(raw.get("found")),
            tag=(raw.get("tag") or "").lower(),
            input_type=(raw.get("type") or "").lower(),
            element_id=raw.get("id") or "",
            name=raw.get("name") or "",
            value=raw.get("value") or "",
            checked=bool(raw.get("checked")),
            options=tuple(
                OptionFacts(value=str(opt.get("value") or ""), text=str(opt.get("text") or ""))
                for opt in raw.get("options") or []
            ),
            group=tuple((str(m.get("value") or ""), str(m.get("id") or "")) for m in raw.get("group") or []),
        )

    @property
    def widget_kind(self) -> WidgetKind:
        return widget_kind_for(self.tag, self.input_type)


@dataclass(frozen=True)
class WritePlan:
    key: str
    prop: str
    value: Union[str, bool]
    notify: bool = True
    radio_index: Optional[int] = None

    def to_arg(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "prop": self.prop,
            "value": self.value,
            "notify": self.notify,
            "radioIndex": self.radio_index,
        }


def _match_select_option(options: Sequence[OptionFacts], value: str) -> Optional[str]:
    for option in options:
        if option.value == value:
            return option.value
    lowered = value.strip().lower()
    if not lowered:
        return None
    for option in options:
        if lowered in option.text.lower():
            return option.value
    return None


def plan_write(probe: TargetProbe, value: str) -> WritePlan:
    """Decide how `value` lands on the probed widget, or raise WidgetMismatch."""
    kind = probe.widget_kind
    if kind in (WidgetKind.TEXT, WidgetKind.TEXTAREA):
        return WritePlan(key=probe.key, prop="value", value=value)

    if kind is WidgetKind.CHECKBOX:
        should_check = parse_checkbox(value)
        return WritePlan(key=probe.key, prop="checked", value=should_check, notify=probe.checked != should_check)

    if kind is WidgetKind.RADIO:
        if value in (probe.value, probe.element_id):
            return WritePlan(key=probe.key, prop="checked", value=True)
        for index, (member_value, member_id) in enumerate(probe.group):
            if value in (member_value, member_id):
                return WritePlan(key=probe.key, prop="checked", value=True, radio_index=index)
        raise WidgetMismatch(f"radio {probe.key!r} has no option {value!r}")

    if kind is WidgetKind.SELECT:
        matched = _match_select_option(probe.options, value)
        if matched is None:
            raise WidgetMismatch(f"select {probe.key!r} has no option matching {value!r}")
        return WritePlan(key=probe.key, prop="value", value=matched)

    raise WidgetMismatch(
        f"element {probe.key!r} is not a fillable widget (tag={probe.tag or '-'} type={probe.input_type or '-'})"
    )


@dataclass
class ContextFillReport:
    location: str = ""
    filled: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


async def fill_context(
    context: DomContext, mapping: FieldMapping, *, highlight_ms: Optional[int] = None
) -> ContextFillReport:
    """Attempt every identity of `mapping` that this frame can resolve locally."""
    report = ContextFillReport(location=context_location(context))
    keys = list(mapping)
    if not keys:
        return report

    raw_probes = await context.evaluate(PROBE_TARGETS_SCRIPT, keys) or []
    probes = {probe.key: probe for probe in (TargetProbe.from_dict(raw) for raw in raw_probes)}

    plans: List[WritePlan] = []
    for key in keys:
        probe = probes.get(key)
        if probe is None or not probe.found:
            report.not_found.append(key)
            continue
        try:
            plans.append(plan_write(probe, mapping[key]))
        except WidgetMismatch as exc:
            report.failed.append(key)
            report.errors[key] = str(exc)

    if plans:
        payload = {
            "plans": [plan.to_arg() for plan in plans],
            "highlightMs": settings.highlight_ms if highlight_ms is None else highlight_ms,
        }
        try:
            applied = await context.evaluate(APPLY_WRITES_SCRIPT, payload) or []
        except Exception as exc:  # noqa: BLE001
            logging.warning("fill_context: apply_failed url=%s plans=%s error=%r", report.location, len(plans), exc)
            for plan in plans:
                report.failed.append(plan.key)
                report.errors[plan.key] = repr(exc)
        else:
            results = {item.get("key"): item for item in applied}
            for plan in plans:
                item = results.get(plan.key) or {}
                if item.get("ok"):
                    report.filled.append(plan.key)
                else:
                    report.failed.append(plan.key)
                    report.errors[plan.key] = item.get("error") or "no result from page"

    logging.debug(
        "fill_context: url=%s filled=%s failed=%s not_found=%s errors=%s",
        report.location,
        report.filled,
        report.failed,
        len(report.not_found),
        report.errors,
    )
    return report


async def write(context: DomContext, identity: str, value: str, *, highlight_ms: Optional[int] = None) -> bool:
    """Write one value into one frame. Never raises; False covers every failure."""
    try:
        report = await fill_context(context, {identity: value}, highlight_ms=highlight_ms)
    except Exception as exc:  # noqa: BLE001
        logging.warning("write: failed key=%s url=%s error=%r", identity, context_location(context), exc)
        return False
    return identity in report.filled


def reconcile(keys: Sequence[str], reports: Sequence[Optional[ContextFillReport]]) -> FillOutcome:
    """
    Fold per-frame reports into one outcome. Reports must be in frame order: the
    first frame that filled a key is the one recorded, later frames are not
    reconsidered for it.
    """
    filled_in: Dict[str, str] = {}
    located: set[str] = set()
    for report in reports:
        if report is None:
            continue
        for key in report.filled:
            filled_in.setdefault(key, report.location)
        located.update(report.failed)

    outcome = FillOutcome()
    for key in keys:
        if key in filled_in:
            outcome.filled.append(key)
            outcome.filled_in[key] = filled_in[key]
        elif key in located:
            outcome.failed.append(key)
        else:
            outcome.not_found.append(key)
    return outcome


async def fill_all(page: Page, mapping: Any, *, highlight_ms: Optional[int] = None) -> FillOutcome:
    mapping = validate_mapping(mapping)
    if not mapping:
        return FillOutcome()

    async def fill_one(context: DomContext) -> ContextFillReport:
        return await fill_context(context, mapping, highlight_ms=highlight_ms)

    calls = await gather_contexts(list_contexts(page), fill_one, label="fill_all")
    outcome = reconcile(list(mapping), [call.result if call.ok else None for call in calls])
    logging.info("fill_all: contexts=%s %s", len(calls), outcome.summary())
    return outcome
