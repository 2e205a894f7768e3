"""Dalil runner - draft and insert text into web form fields without ever submitting them."""

from __future__ import annotations

__all__ = [
    '__version__',
]

__version__ = '0.1.0'
