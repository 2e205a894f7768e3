"""Control Protocol client used by every `dalil` command except `run`.

Locates the controller exclusively through the published ConnectionDescriptor and
talks to it over loopback HTTP. A missing or stale descriptor, a refused
connection or a timeout all surface as ControllerUnreachableError; a response
whose envelope is not ok is raised as the matching domain error, whatever its
HTTP status.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dalil.errors import ControllerUnreachableError, DalilError, error_for_status
from dalil.repositories.connection import ConnectionStore
from dalil.schemas.fields import FieldInfo
from dalil.schemas.protocol import ApplyChannel, PageInfo, ScanResult

__all__ = [
    'ControllerClient',
]

logger = logging.getLogger(__name__)

NOT_RUNNING_MESSAGE = 'Runner is not active. Start it with `dalil run`.'


class ControllerClient:
    """Stateless request/response client: one short-lived connection per call.

    Args:
        store: Where the controller's ConnectionDescriptor is published.
        timeout: Overall per-request timeout in seconds (keystroke typing can be slow).
        connect_timeout: Connect timeout in seconds. Loopback either answers fast or not at all.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        store: ConnectionStore,
        *,
        timeout: float = 30.0,
        connect_timeout: float = 2.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._store = store
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._transport = transport

    def health(self) -> dict[str, Any]:
        return self._request('GET', '/health')

    def scan(self) -> ScanResult:
        payload = self._request('POST', '/scan_fields')
        return ScanResult.model_validate(_without_ok(payload), strict=False)

    def fields(self) -> list[FieldInfo]:
        payload = self._request('GET', '/fields')
        return [FieldInfo.model_validate(item, strict=False) for item in payload['fields']]

    def get_field(self, field_id: str) -> FieldInfo:
        payload = self._request('GET', f'/field/{field_id}')
        return FieldInfo.model_validate(payload['field'], strict=False)

    def page_info(self) -> PageInfo:
        payload = self._request('GET', '/page_info')
        return PageInfo.model_validate(payload['page'], strict=False)

    def highlight(self, field_id: str) -> None:
        self._request('POST', '/highlight_field', {'fieldId': field_id})

    def read_value(self, field_id: str) -> str:
        payload = self._request('POST', '/read_field_value', {'fieldId': field_id})
        return str(payload.get('value') or '')

    def set_value(self, field_id: str, text: str) -> None:
        self._request('POST', '/set_field_value', {'fieldId': field_id, 'text': text})

    def type_text(self, field_id: str, text: str) -> None:
        self._request('POST', '/type_into_field', {'fieldId': field_id, 'text': text})

    def apply(self, field_id: str, text: str) -> ApplyChannel:
        payload = self._request('POST', '/apply_field', {'fieldId': field_id, 'text': text})
        channel: ApplyChannel = payload.get('channel', 'programmatic')
        return channel

    def revert(self, field_id: str) -> None:
        self._request('POST', '/revert_field', {'fieldId': field_id})

    def shutdown(self) -> None:
        self._request('POST', '/shutdown')

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        descriptor = self._store.load_live()
        if descriptor is None:
            raise ControllerUnreachableError(NOT_RUNNING_MESSAGE)

        url = f'http://127.0.0.1:{descriptor.port}{path}'
        logger.debug(f'{method} {url}')
        try:
            # Loopback only: never route through an environment proxy
            with httpx.Client(transport=self._transport, timeout=self._timeout, trust_env=False) as http:
                response = http.request(method, url, json=body)
        except httpx.TransportError as e:
            raise ControllerUnreachableError(
                f'Runner connection failed ({type(e).__name__}). Is `dalil run` still running?'
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise DalilError(f'Malformed response from runner for {path} (HTTP {response.status_code})') from e

        if not isinstance(payload, dict):
            raise DalilError(f'Malformed response from runner for {path} (HTTP {response.status_code})')
        if payload.get('ok') is not True:
            message = payload.get('error') or f'Runner request {path} failed (HTTP {response.status_code})'
            raise error_for_status(response.status_code, str(message))
        return payload


def _without_ok(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if key != 'ok'}
