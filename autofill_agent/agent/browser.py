from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar, Union

from playwright.async_api import (
    BrowserContext,
    Frame,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from ..config import settings

DomContext = Union[Page, Frame]

T = TypeVar("T")

ACTIVATE_SCRIPT = """
(selector) => {
    const el = document.querySelector(selector);
    if (!el) {
        return false;
    }
    el.click();
    return true;
}
"""

PRESENCE_SCRIPT = """
(selector) => !!document.querySelector(selector)
"""


class BrowserSession:
    def __init__(self, user_data_dir: str | None = None, headless: bool | None = None) -> None:
        self.context: BrowserContext | None = None
        self.page: Page | None = None
        self._playwright: Playwright | None = None
        self.headless = settings.headless if headless is None else headless
        self.user_data_dir = os.path.expanduser(user_data_dir or settings.user_data_dir)

    async def __aenter__(self) -> "BrowserSession":
        self._playwright = await async_playwright().start()
        self.context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=self.user_data_dir,
            headless=self.headless,
        )
        pages = self.context.pages
        self.page = pages[0] if pages else await self.context.new_page()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.context:
            await self.context.close()
        if self._playwright:
            await self._playwright.stop()

    async def goto(self, url: str, wait_ms: int = 1500) -> None:
        """
        Navigate to a URL and give the app a moment to hydrate.
        """
        if not self.page:
            raise RuntimeError("Browser page is not initialized. Use within an async context manager.")

        await self.page.goto(url, wait_until="domcontentloaded", timeout=30000)
        try:
            await self.page.wait_for_load_state("networkidle", timeout=5000)
        except PlaywrightTimeoutError:
            logging.info("browser_goto: networkidle wait timed out url=%s, continuing anyway", url)

        if wait_ms > 0:
            await self.page.wait_for_timeout(wait_ms)

    def __repr__(self) -> str:
        return f"BrowserSession(headless={self.headless})"


def list_contexts(page: Page) -> List[Frame]:
    """Main frame first, then every other attached frame in page order."""
    main = page.main_frame
    contexts: List[Frame] = [main]
    for frame in page.frames:
        if frame == main or frame.is_detached():
            continue
        contexts.append(frame)
    return contexts


def context_location(context: DomContext) -> str:
    try:
        return context.url or ""
    except Exception:  # noqa: BLE001
        return ""


@dataclass
class ContextCall(Generic[T]):
    index: int
    context: DomContext
    result: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_contexts(
    contexts: List[DomContext],
    operation: Callable[[DomContext], Awaitable[T]],
    *,
    label: str = "context_call",
) -> List[ContextCall[T]]:
    """Run one operation against every context at once and wait for all of them.

    Results come back in the order of `contexts`. A context that raises is
    reported through `error` and does not cancel its siblings.
    """
    outcomes: List[Any] = await asyncio.gather(
        *(operation(context) for context in contexts), return_exceptions=True
    )
    calls: List[ContextCall[T]] = []
    for index, (context, outcome) in enumerate(zip(contexts, outcomes)):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logging.warning(
                "%s: context_failed ctx=%s url=%s error=%r",
                label,
                index,
                context_location(context),
                outcome,
            )
            calls.append(ContextCall(index=index, context=context, error=outcome))
        else:
            calls.append(ContextCall(index=index, context=context, result=outcome))
    return calls


async def activate(context: DomContext, selector: str) -> bool:
    """Click the first element matching `selector` in one context; False when nothing matches."""
    return bool(await context.evaluate(ACTIVATE_SCRIPT, selector))


async def selector_present(context: DomContext, selector: str) -> bool:
    return bool(await context.evaluate(PRESENCE_SCRIPT, selector))
