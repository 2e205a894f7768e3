"""Error taxonomy shared by the controller and its clients.

Domain errors travel as data: the controller turns them into
{"ok": false, "error": ...} responses with the status_code below, and the
client turns a non-ok response back into the matching exception class.
The CLI exits with exit_code.
"""

from __future__ import annotations

from collections.abc import Mapping

__all__ = [
    'ControllerUnreachableError',
    'DalilError',
    'DriverError',
    'EnvironmentNotReadyError',
    'FieldGoneError',
    'FieldNotFoundError',
    'InsertionBlockedError',
    'NoUndoAvailableError',
    'UsageError',
    'error_for_status',
]


class DalilError(Exception):
    """Base class for every expected failure."""

    exit_code: int = 1
    status_code: int = 500


class UsageError(DalilError):
    """Bad arguments or request body."""

    exit_code = 2
    status_code = 400


class EnvironmentNotReadyError(DalilError):
    """Driver or browser unavailable, port taken, page timed out. Fatal, not retried."""

    exit_code = 3
    status_code = 503


class DriverError(DalilError):
    """The browser driver failed or a page script raised."""

    exit_code = 3
    status_code = 502


class ControllerUnreachableError(DalilError):
    """No live controller behind the published connection descriptor."""

    exit_code = 3
    status_code = 503


class FieldNotFoundError(DalilError):
    """Unknown field id - recover by rescanning."""

    exit_code = 4
    status_code = 404


class FieldGoneError(DalilError):
    """Element vanished from the page since the scan - recover by rescanning."""

    exit_code = 4
    status_code = 410


class InsertionBlockedError(DalilError):
    """The page refused the value. Terminal for this attempt."""

    exit_code = 5
    status_code = 422


class NoUndoAvailableError(DalilError):
    """Nothing to revert. A normal terminal state, not a fault."""

    exit_code = 6
    status_code = 409


_BY_STATUS: Mapping[int, type[DalilError]] = {
    cls.status_code: cls
    for cls in (
        UsageError,
        EnvironmentNotReadyError,
        DriverError,
        FieldNotFoundError,
        FieldGoneError,
        InsertionBlockedError,
        NoUndoAvailableError,
    )
}


def error_for_status(status_code: int, message: str) -> DalilError:
    """Rebuild the domain error a controller reported with the given HTTP status."""
    return _BY_STATUS.get(status_code, DalilError)(message)
