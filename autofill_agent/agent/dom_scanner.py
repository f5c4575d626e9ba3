from __future__ import annotations
"""Form-field scanner for every frame of a page (no app-specific selectors)."""

import logging
from typing import List

from playwright.async_api import Page

from ..models import ContextSchema, FieldDescriptor, FieldIdentity, WidgetKind
from .browser import DomContext, context_location, gather_contexts, list_contexts
from .label_resolver import ElementFacts, is_candidate, resolve_label_with_source, widget_kind_for

# Returns raw facts for every input/textarea/select in document order. Visibility
# and label decisions are made in Python from these facts.
SCAN_FIELDS_SCRIPT = """
() => {
    const text = (node) => (node && node.textContent ? node.textContent.trim() : "");

    const labelFor = (el) => {
        if (!el.id) return "";
        const label = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
        return text(label);
    };

    const enclosingLabel = (el) => {
        const parent = el.closest("label");
        if (!parent) return "";
        const clone = parent.cloneNode(true);
        clone.querySelectorAll("input, select, textarea").forEach((node) => node.remove());
        return text(clone);
    };

    const previousLabel = (el) => {
        const prev = el.previousElementSibling;
        return prev && prev.tagName === "LABEL" ? text(prev) : "";
    };

    const parentPreviousLabel = (el) => {
        const parent = el.parentElement;
        const prev = parent ? parent.previousElementSibling : null;
        return prev && prev.tagName === "LABEL" ? text(prev) : "";
    };

    const previousCell = (el) => {
        const parent = el.parentElement;
        if (!parent || parent.tagName !== "TD") return "";
        return text(parent.previousElementSibling);
    };

    const labelledbyText = (el) => {
        const ids = (el.getAttribute("aria-labelledby") || "").split(/\\s+/).filter(Boolean);
        return ids.map((id) => text(document.getElementById(id))).filter(Boolean).join(" ");
    };

    return Array.from(document.querySelectorAll("input, textarea, select")).map((el) => {
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        const tag = el.tagName.toLowerCase();
        return {
            tag,
            type: tag === "input" ? (el.type || "text").toLowerCase() : "",
            id: el.id || "",
            name: el.getAttribute("name") || "",
            placeholder: el.getAttribute("placeholder") || "",
            display: style.display,
            visibility: style.visibility,
            opacity: style.opacity,
            width: rect.width,
            height: rect.height,
            labelFor: labelFor(el),
            enclosingLabel: enclosingLabel(el),
            previousLabel: previousLabel(el),
            parentPreviousLabel: parentPreviousLabel(el),
            previousCell: previousCell(el),
            ariaLabel: el.getAttribute("aria-label") || "",
            labelledbyText: labelledbyText(el),
            title: el.getAttribute("title") || "",
            options: tag === "select"
                ? Array.from(el.options).map((opt) => ({ value: opt.value, text: opt.text }))
                : [],
        };
    });
}
"""


def descriptor_from_facts(facts: ElementFacts) -> FieldDescriptor:
    widget_kind = widget_kind_for(facts.tag, facts.input_type)
    label, _source = resolve_label_with_source(facts)
    options: tuple[str, ...] = ()
    if widget_kind is WidgetKind.SELECT:
        # Placeholder entries ("-- choose --") carry an empty value and are not real choices.
        options = tuple(opt.text for opt in facts.options if opt.value and opt.text)
    return FieldDescriptor(
        identity=FieldIdentity(primary_id=facts.element_id, name_attr=facts.name),
        widget_kind=widget_kind,
        input_type=facts.input_type if facts.tag == "input" else facts.tag,
        placeholder=facts.placeholder,
        label=label,
        options=options,
    )


async def scan_context(context: DomContext) -> ContextSchema:
    """Build a fresh schema of the visible data-entry fields in one frame."""
    raw_elements = await context.evaluate(SCAN_FIELDS_SCRIPT) or []
    location = context_location(context)

    fields: List[FieldDescriptor] = []
    skipped_hidden = 0
    skipped_no_signal = 0
    for raw in raw_elements:
        facts = ElementFacts.from_dict(raw)
        if not is_candidate(facts):
            skipped_hidden += 1
            continue
        descriptor = descriptor_from_facts(facts)
        if not descriptor.has_signal():
            skipped_no_signal += 1
            continue
        fields.append(descriptor)

    logging.debug(
        "scan_context: url=%s raw=%s fields=%s skipped_hidden=%s skipped_no_signal=%s",
        location,
        len(raw_elements),
        len(fields),
        skipped_hidden,
        skipped_no_signal,
    )
    return ContextSchema.capture(location, fields)


async def scan_each(page: Page) -> List[ContextSchema]:
    """Scan every frame at once; frames that fail to evaluate are left out."""
    calls = await gather_contexts(list_contexts(page), scan_context, label="scan_all")
    return [call.result for call in calls if call.ok and call.result is not None]


async def scan_all(page: Page) -> ContextSchema:
    """
    Merge the per-frame schemas into one, keeping frame order and document order
    within each frame. Identities repeated across frames are kept as-is.
    """
    schemas = await scan_each(page)
    fields: List[FieldDescriptor] = []
    for schema in schemas:
        fields.extend(schema.fields)

    sample = [
        {"key": descriptor.key, "kind": descriptor.widget_kind.value, "label": descriptor.label[:40]}
        for descriptor in fields[:5]
    ]
    logging.debug("scan_all: contexts=%s fields=%s sample=%s", len(schemas), len(fields), sample)
    return ContextSchema.capture(context_location(page), fields)
