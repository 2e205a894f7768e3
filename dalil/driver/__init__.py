"""Browser driver boundary."""

from __future__ import annotations

from dalil.driver.adapter import BrowserSession, DriverAdapter, PlaywrightDriver

__all__ = [
    'BrowserSession',
    'DriverAdapter',
    'PlaywrightDriver',
]
