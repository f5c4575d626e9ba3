from __future__ import annotations
"""Read-only enumeration of interactive elements, for finding workflow selectors."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from playwright.async_api import Page

from ..config import settings
from .browser import DomContext, gather_contexts, list_contexts

COLLECT_INTERACTIVE_SCRIPT = """
() => {
    const describe = (el) => {
        const tag = el.tagName;
        const id = el.id ? `#${el.id}` : "";
        const className = typeof el.className === "string" ? el.className : "";
        const classes = className
            .split(/\\s+/)
            .filter(Boolean)
            .slice(0, 2)
            .map((c) => `.${c}`)
            .join("");
        const nameAttr = el.getAttribute("name");
        const typeAttr = el.getAttribute("type");
        const name = nameAttr ? `[name="${nameAttr}"]` : "";
        const type = typeAttr ? `[type="${typeAttr}"]` : "";
        const onclick = el.getAttribute("onclick") ? "[onclick]" : "";
        const value = (el.getAttribute("value") || "").substring(0, 15);
        const text = (el.textContent || "").trim().replace(/\\s+/g, " ").substring(0, 20);
        return `${tag}${id}${classes}${name}${type}${onclick} "${value || text}"`;
    };

    const collect = (selector, keep) =>
        Array.from(document.querySelectorAll(selector))
            .filter(keep || (() => true))
            .map(describe);

    return {
        url: window.location.href,
        title: document.title || "",
        buttons: collect('button, input[type="submit"], input[type="button"], [role="button"]'),
        links: collect("a[href], [onclick]", (el) => (el.textContent || "").trim().length > 0),
        inputs: collect('input:not([type="hidden"]), textarea'),
        selects: collect("select"),
    };
}
"""

CATEGORIES = ("buttons", "links", "inputs", "selects")


@dataclass
class FrameDiagnostics:
    index: int
    url: str
    title: str = ""
    buttons: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    inputs: List[str] = field(default_factory=list)
    selects: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, index: int, raw: dict) -> "FrameDiagnostics":
        return cls(
            index=index,
            url=raw.get("url") or "",
            title=raw.get("title") or "",
            buttons=list(raw.get("buttons") or []),
            links=list(raw.get("links") or []),
            inputs=list(raw.get("inputs") or []),
            selects=list(raw.get("selects") or []),
        )

    @property
    def total(self) -> int:
        return sum(len(getattr(self, category)) for category in CATEGORIES)

    def lines(self, limit: Optional[int] = None) -> List[str]:
        """Summary lines for this frame; empty when the frame has nothing interactive."""
        if not self.total:
            return []
        limit = settings.diagnostic_limit if limit is None else limit
        lines = [f"Frame {self.index + 1}: {self.url[:60]} \"{self.title[:40]}\""]
        for category in CATEGORIES:
            entries = getattr(self, category)
            if not entries:
                continue
            lines.append(f"  {category.upper()} ({len(entries)}):")
            lines.extend(f"     {entry}" for entry in entries[:limit])
            if len(entries) > limit:
                lines.append(f"     ... {len(entries) - limit} more")
        return lines


async def collect_interactive_elements(context: DomContext, index: int = 0) -> FrameDiagnostics:
    raw = await context.evaluate(COLLECT_INTERACTIVE_SCRIPT) or {}
    return FrameDiagnostics.from_dict(index, raw)


async def diagnose_all(page: Page) -> List[FrameDiagnostics]:
    contexts = list_contexts(page)
    calls = await gather_contexts(contexts, collect_interactive_elements, label="diagnose_all")
    frames: List[FrameDiagnostics] = []
    for call in calls:
        if call.ok and call.result is not None:
            call.result.index = call.index
            frames.append(call.result)
    logging.debug(
        "diagnose_all: contexts=%s elements=%s", len(contexts), sum(frame.total for frame in frames)
    )
    return frames


def render_diagnostics(frames: List[FrameDiagnostics], limit: Optional[int] = None) -> List[str]:
    lines: List[str] = []
    for frame in frames:
        lines.extend(frame.lines(limit))
    return lines
