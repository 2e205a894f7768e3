"""Process-level error boundary for the `dalil` entry point.

Domain code raises DalilError subclasses and never catches them to print or exit.
The boundary at main() is the single place that turns an exception into stderr
output and an exit status:

    boundary = ErrorBoundary()

    @boundary.handler(DalilError)
    def handle_domain(exc: DalilError) -> int:
        print(f'error: {exc}', file=sys.stderr)
        return exc.exit_code

    @boundary
    def main() -> None:
        ...

Handlers are matched by MRO (functools.singledispatch), so a handler registered
for Exception is the catch-all. A handler may return an exit code to override
the boundary's default. System exceptions (KeyboardInterrupt, SystemExit,
CancelledError) always pass through.
"""

from __future__ import annotations

__all__ = [
    'ErrorBoundary',
    'ErrorHandler',
]

import functools
import sys
import traceback
from collections.abc import Callable
from functools import singledispatch
from types import TracebackType
from typing import Any, Self, TypeVar, cast

type ErrorHandler = Callable[[Exception], int | None]

_F = TypeVar('_F', bound=Callable[..., object])


class ErrorBoundary:
    """Catches application exceptions at an entry point and exits with a status.

    Args:
        exit_code: Status used when the matching handler returns None.
            None suppresses and continues instead of exiting.
    """

    def __init__(self, *, exit_code: int | None = 1) -> None:
        self._dispatch = singledispatch(_default_handler)
        self._exit_code = exit_code

    def handler(self, exc_type: type[Exception]) -> Callable[[Callable[..., int | None]], Callable[..., int | None]]:
        """Register a handler for a specific exception type (and its subclasses)."""
        return self._dispatch.register(exc_type)

    def __call__(self, func: _F) -> _F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with self:
                return func(*args, **kwargs)

        return cast(_F, wrapper)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        return self._handle(exc_value)

    def _handle(self, exc_value: BaseException | None) -> bool:
        """Run the matching handler, then exit or suppress.

        A failing handler cannot breach the boundary: the original exception is
        reported with the default handler instead.
        """
        if not isinstance(exc_value, Exception):
            return False  # No exception, or system exception - pass through

        exit_code: int | None = None
        try:
            exit_code = self._dispatch(exc_value)
        except Exception:
            try:  # noqa: SIM105 - stderr itself may be broken
                _default_handler(exc_value)
            except Exception:
                pass

        if exit_code is None:
            exit_code = self._exit_code
        if exit_code is not None:
            sys.exit(exit_code)
        return True


def _default_handler(exc: Exception) -> int | None:
    """Print exception with traceback to stderr."""
    traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
    return None
