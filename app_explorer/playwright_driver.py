from __future__ import annotations

"""Capture and execution capabilities for a Playwright browser page."""

import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .capabilities import ExecutionOutcome
from .decision import EXECUTABLE_ACTIONS, ExplorationDecision
from .errors import CaptureError, ExecutionError, ExecutionErrorKind

logger = logging.getLogger(__name__)

# Walks the visible DOM into the raw tree shape HierarchyCompressor expects.
DOM_WALK_JS = """
() => {
  const INTERACTIVE_TAGS = new Set(['a', 'button', 'input', 'select', 'textarea']);
  const INTERACTIVE_ROLES = new Set(['button', 'link', 'tab', 'checkbox', 'switch', 'radio',
                                     'menuitem', 'textbox', 'searchbox', 'combobox', 'slider']);
  const SKIP = new Set(['script', 'style', 'noscript', 'template', 'meta', 'head']);

  function visible(el) {
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden') return false;
    const rect = el.getBoundingClientRect();
    return rect.width > 0 || rect.height > 0;
  }

  function rawType(el) {
    const role = el.getAttribute('role');
    if (role) return role;
    const tag = el.tagName.toLowerCase();
    if (tag === 'input') {
      const t = (el.getAttribute('type') || 'text').toLowerCase();
      if (t === 'checkbox' || t === 'radio' || t === 'range') return t;
      if (t === 'submit' || t === 'button') return 'button';
      return 'input';
    }
    return tag;
  }

  function ownText(el) {
    let text = '';
    for (const node of el.childNodes) {
      if (node.nodeType === Node.TEXT_NODE) text += node.textContent;
    }
    return text.trim().slice(0, 80);
  }

  function walk(el) {
    const tag = el.tagName.toLowerCase();
    if (SKIP.has(tag) || !visible(el)) return null;
    const role = el.getAttribute('role');
    const node = {
      type: rawType(el),
      id: el.id || el.getAttribute('data-testid') || el.getAttribute('name') || null,
      label: el.getAttribute('aria-label') || el.getAttribute('placeholder') || el.getAttribute('alt')
             || ownText(el) || (INTERACTIVE_TAGS.has(tag) ? (el.innerText || '').trim().slice(0, 80) : '') || null,
      interactive: INTERACTIVE_TAGS.has(tag) || (role !== null && INTERACTIVE_ROLES.has(role))
                   || el.hasAttribute('onclick'),
      children: [],
    };
    if ('value' in el && typeof el.value === 'string' && el.value !== '') node.value = el.value;
    for (const child of el.children) {
      const c = walk(child);
      if (c) node.children.push(c);
    }
    return node;
  }

  return walk(document.body) || {type: 'body', children: []};
}
"""


class PlaywrightDriver:
    """Implements both CaptureCapability and ExecutionCapability for one ``Page``.

    ``stay_on_origin`` keeps exploration on the starting site: an action that
    navigates to another host is undone with ``go_back`` and reported as failed.
    """

    def __init__(
        self,
        page: Page,
        action_timeout: float = 5.0,
        swipe_fraction: float = 0.8,
        stay_on_origin: bool = True,
    ) -> None:
        self.page = page
        self._timeout_ms = action_timeout * 1000
        self._swipe_fraction = swipe_fraction
        self._stay_on_origin = stay_on_origin
        self._origin: Optional[str] = None

    # --- capture ---------------------------------------------------------
    async def capture(self) -> Tuple[Dict[str, Any], bytes]:
        try:
            await self.page.wait_for_load_state("domcontentloaded", timeout=self._timeout_ms)
            tree = await self.page.evaluate(DOM_WALK_JS)
            screenshot = await self.page.screenshot(type="png")
        except PlaywrightError as exc:
            raise CaptureError(f"Could not capture {self.page.url}: {exc}") from exc
        if self._origin is None:
            self._origin = urlparse(self.page.url).netloc
        return tree, screenshot

    # --- execute ---------------------------------------------------------
    async def execute(self, decision: ExplorationDecision) -> ExecutionOutcome:
        action = decision.action
        if action == "done":
            return ExecutionOutcome.STOP
        if action not in EXECUTABLE_ACTIONS:
            raise ExecutionError(ExecutionErrorKind.UNKNOWN_ACTION, action)
        if action in ("tap", "type") and not decision.target_element:
            raise ExecutionError(ExecutionErrorKind.MISSING_TARGET)
        if action == "type" and not decision.text_to_type:
            raise ExecutionError(ExecutionErrorKind.MISSING_TEXT)

        try:
            if action == "tap":
                locator = await self._locate(decision.target_element)
                await locator.click(timeout=self._timeout_ms)
            elif action == "type":
                locator = await self._locate(decision.target_element)
                await locator.fill(decision.text_to_type, timeout=self._timeout_ms)
            elif action == "swipe":
                viewport = self.page.viewport_size or {"height": 800}
                await self.page.mouse.wheel(0, viewport["height"] * self._swipe_fraction)
            else:
                response = await self.page.go_back(timeout=self._timeout_ms, wait_until="domcontentloaded")
                if response is None:
                    logger.info("No history entry to go back to")
                    return ExecutionOutcome.FAILED
        except PlaywrightTimeoutError as exc:
            raise ExecutionError(ExecutionErrorKind.EXECUTION_FAILED, f"timed out: {exc}") from exc
        except PlaywrightError as exc:
            raise ExecutionError(ExecutionErrorKind.EXECUTION_FAILED, str(exc)) from exc

        if await self._left_origin():
            return ExecutionOutcome.FAILED
        return ExecutionOutcome.CONTINUE

    async def _locate(self, target: str) -> Locator:
        """Resolve an element id or label the way the DOM walk reported it."""
        quoted = target.replace('"', '\\"')
        candidates = (
            self.page.locator(f'[id="{quoted}"]'),
            self.page.locator(f'[data-testid="{quoted}"]'),
            self.page.locator(f'[name="{quoted}"]'),
            self.page.get_by_label(target, exact=True),
            self.page.get_by_placeholder(target, exact=True),
            self.page.get_by_text(target, exact=True),
        )
        for locator in candidates:
            if await locator.count() > 0:
                return locator.first
        raise ExecutionError(ExecutionErrorKind.ELEMENT_NOT_FOUND, target)

    async def _left_origin(self) -> bool:
        if not self._stay_on_origin or self._origin is None:
            return False
        netloc = urlparse(self.page.url).netloc
        if netloc in (self._origin, ""):
            return False
        logger.warning("Navigated outside %s to %s, going back", self._origin, netloc)
        try:
            await self.page.go_back(timeout=self._timeout_ms, wait_until="domcontentloaded")
        except PlaywrightError as exc:
            raise ExecutionError(ExecutionErrorKind.EXECUTION_FAILED, f"could not return to {self._origin}: {exc}") from exc
        return True
