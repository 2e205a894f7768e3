"""Safety Guard - neutralizes page-level programmatic form submission.

Installed once per browser context, before the first page the controller uses,
so it covers every page and navigation in that context. form.submit() and
form.requestSubmit() become no-ops that warn on the page console and return
normally. The Control Protocol exposes no navigate/submit operation at all;
this only closes the route a page script could still take.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from playwright.async_api import ConsoleMessage

from dalil.driver.scripts import SAFETY_GUARD_JS, SAFETY_GUARD_MARKER

__all__ = [
    'GuardedContext',
    'SafetyGuard',
]

logger = logging.getLogger(__name__)


class GuardedContext(Protocol):
    """What the guard needs from a browser session."""

    async def install_safety_guard(self, script: str, on_console: Callable[[ConsoleMessage], None]) -> None: ...


class SafetyGuard:
    def __init__(self) -> None:
        self.installed = False
        self.blocked_attempts = 0

    async def install(self, context: GuardedContext) -> None:
        if self.installed:
            return
        await context.install_safety_guard(SAFETY_GUARD_JS, self.on_console)
        self.installed = True
        logger.info('Safety guard installed (form submission disabled)')

    def on_console(self, message: ConsoleMessage) -> None:
        if message.type != 'warning' or not message.text.startswith(SAFETY_GUARD_MARKER):
            return
        self.blocked_attempts += 1
        logger.warning(f'Page attempted to submit a form: {message.text}')
