"""Mutation Engine - apply and revert field values with one-level undo.

Undo invariants:
- At most one UndoEntry per field id: the value observed immediately before the
  most recent mutation that changed the field, including one that then failed
  after the page had already altered the value.
- A later mutation overwrites the entry (no stack); a successful revert consumes it,
  so a revert can never itself be reverted.
- A revert is possible iff an entry exists. clear_undo() runs on every scan because
  ids from the previous DOM state are no longer trustworthy.

Capture-then-mutate is not atomic against the page, so callers must serialize
mutations of the same field (ControlPlane does this for every request).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dalil.driver.adapter import DriverAdapter
from dalil.driver.scripts import ELEMENT_EXISTS_JS, READ_VALUE_JS, SET_VALUE_JS
from dalil.errors import DalilError, DriverError, FieldGoneError, InsertionBlockedError, NoUndoAvailableError
from dalil.schemas.fields import FieldDescriptor
from dalil.schemas.protocol import ApplyChannel

__all__ = [
    'MutationEngine',
]

logger = logging.getLogger(__name__)


class MutationEngine:
    """Owns the undo-by-id table and every write to the page."""

    def __init__(self, driver: DriverAdapter, *, typing_delay_ms: float = 4.0) -> None:
        self._driver = driver
        self._typing_delay_ms = typing_delay_ms
        self._undo: dict[str, str] = {}

    def has_undo(self, field_id: str) -> bool:
        return field_id in self._undo

    def clear_undo(self) -> None:
        if self._undo:
            logger.debug(f'Dropping {len(self._undo)} undo entries after rescan')
        self._undo.clear()

    async def read_value(self, field: FieldDescriptor) -> str:
        value = await self._driver.evaluate_in_page(READ_VALUE_JS, field.dom_path)
        return str(value or '')

    async def set_value(self, field: FieldDescriptor, text: str) -> None:
        """Programmatic value set with input/change notifications.

        Raises:
            FieldGoneError: The element is no longer at its recorded DOM path.
            InsertionBlockedError: The page threw or ignored the assignment. If the
                page changed the value anyway, the undo entry is kept.
        """
        await self._ensure_present(field)
        previous = await self.read_value(field)
        async with self._undo_guard(field, previous):
            await self._write(field, text)

    async def type_keystrokes(self, field: FieldDescriptor, text: str) -> None:
        """Click, clear and type one keystroke at a time.

        Raises:
            FieldGoneError: The element is no longer at its recorded DOM path.
            InsertionBlockedError: The text has a line break and the field is a single-line input.
            DriverError: The driver could not focus or type into the element.
        """
        _check_typeable(field, text)
        await self._ensure_present(field)
        previous = await self.read_value(field)
        async with self._undo_guard(field, previous):
            await self._driver.locator_type(field.dom_path, text, delay_ms=self._typing_delay_ms)

    async def apply(self, field: FieldDescriptor, text: str) -> ApplyChannel:
        """Programmatic set, falling back to keystrokes exactly once.

        The undo baseline is captured once, before the first attempt, so a partial
        programmatic write can never become the value a revert restores.

        Raises:
            FieldGoneError: The element is no longer at its recorded DOM path.
            InsertionBlockedError: Both channels failed. No further workaround is tried.
        """
        await self._ensure_present(field)
        previous = await self.read_value(field)

        async with self._undo_guard(field, previous):
            try:
                await self._write(field, text)
                return 'programmatic'
            except InsertionBlockedError as blocked:
                logger.warning(f'Programmatic set blocked for {field.field_id} ({blocked}); falling back to keystrokes')
            _check_typeable(field, text)
            try:
                await self._driver.locator_type(field.dom_path, text, delay_ms=self._typing_delay_ms)
            except DriverError as e:
                raise InsertionBlockedError(
                    f'Insertion blocked for {field.field_id}. Fallback typing also failed: {e}'
                ) from e
            return 'keystrokes'

    async def revert(self, field: FieldDescriptor) -> None:
        """Write the captured value back through the programmatic path and drop the entry.

        Raises:
            NoUndoAvailableError: Nothing was mutated since the last scan (or already reverted).
            FieldGoneError: The element is no longer at its recorded DOM path.
            InsertionBlockedError: The page refused the restored value; the entry is kept.
        """
        if field.field_id not in self._undo:
            logger.info(f'No undo snapshot for {field.field_id}')
            raise NoUndoAvailableError('No undo snapshot available.')
        await self._ensure_present(field)
        await self._write(field, self._undo[field.field_id])
        del self._undo[field.field_id]

    async def _ensure_present(self, field: FieldDescriptor) -> None:
        if not await self._driver.evaluate_in_page(ELEMENT_EXISTS_JS, field.dom_path):
            raise FieldGoneError('Field no longer exists on page. Run scan again.')

    async def _write(self, field: FieldDescriptor, text: str) -> None:
        try:
            observed = await self._driver.evaluate_in_page(SET_VALUE_JS, {'selector': field.dom_path, 'text': text})
        except DriverError as e:
            raise InsertionBlockedError(f'Page rejected programmatic value: {e}') from e
        if observed != _expected_value(field, text):
            raise InsertionBlockedError('Page ignored programmatic value assignment.')

    @asynccontextmanager
    async def _undo_guard(self, field: FieldDescriptor, previous: str) -> AsyncIterator[None]:
        """Record the undo entry before the page is touched.

        A failed mutation that left the value as it was restores the entry it replaced.
        """
        replaced = self._undo.get(field.field_id)
        self._undo[field.field_id] = previous
        try:
            yield
        except DalilError:
            if await self._unchanged(field, previous):
                if replaced is None:
                    del self._undo[field.field_id]
                else:
                    self._undo[field.field_id] = replaced
            else:
                logger.warning(f'Failed mutation changed {field.field_id}; keeping its undo entry')
            raise

    async def _unchanged(self, field: FieldDescriptor, previous: str) -> bool:
        try:
            return await self.read_value(field) == previous
        except DalilError as e:
            logger.debug(f'Could not re-read {field.field_id} after a failed mutation: {e}')
            return False


def _check_typeable(field: FieldDescriptor, text: str) -> None:
    # Typing a line break into a single-line input presses Enter, which submits its form.
    if field.kind == 'input' and ('\n' in text or '\r' in text):
        raise InsertionBlockedError(
            f'Refusing to type line breaks into single-line input {field.field_id}; Enter would submit the form.'
        )


def _expected_value(field: FieldDescriptor, text: str) -> str:
    """Textareas report CRLF and lone CR line breaks as LF."""
    if field.kind == 'textarea':
        return text.replace('\r\n', '\n').replace('\r', '\n')
    return text
