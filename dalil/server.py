"""Control Protocol - loopback request/response API over the control plane.

Architecture:
    dalil <command> ─[HTTP, 127.0.0.1:<port>]─> FastAPI app (this module)
                                                  └── ControlPlane
                                                        ├── FieldRegistry (fields-by-id)
                                                        └── MutationEngine (undo-by-id)

Envelope: {"ok": true, ...payload} on success, {"ok": false, "error": "..."} on
any failure, whatever the HTTP status. Requests touching the page run one at a
time in arrival order; a scan queues behind an in-flight mutation (including a
keystroke fallback) rather than racing it.

No operation navigates, clicks or submits.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
import typing
from collections.abc import Callable
from datetime import datetime

import fastapi
import fastapi.exceptions
import fastapi.responses
from starlette.exceptions import HTTPException as StarletteHTTPException

from dalil.driver.adapter import DriverAdapter
from dalil.driver.scripts import HIGHLIGHT_FIELD_JS, PAGE_INFO_JS
from dalil.errors import DalilError, DriverError, UsageError
from dalil.repositories.snapshot import SnapshotStore
from dalil.schemas.fields import FieldInfo
from dalil.schemas.protocol import ApplyChannel, FieldRequest, FieldTextRequest, PageInfo, ScanResult
from dalil.schemas.runtime import RunnerMode
from dalil.services.mutation import MutationEngine
from dalil.services.registry import FieldRegistry

__all__ = [
    'ControlPlane',
    'create_app',
]

logger = logging.getLogger(__name__)


class ControlPlane:
    """The controller's single control-plane instance.

    Exclusively owns the fields-by-id table (via FieldRegistry) and the
    undo-by-id table (via MutationEngine); neither is handed to collaborators.
    """

    def __init__(
        self,
        driver: DriverAdapter,
        *,
        mode: RunnerMode,
        started_at: datetime,
        snapshot_store: SnapshotStore | None = None,
        typing_delay_ms: float = 4.0,
    ) -> None:
        self.mode = mode
        self.started_at = started_at
        self._driver = driver
        self._registry = FieldRegistry(driver, snapshot_store)
        self._engine = MutationEngine(driver, typing_delay_ms=typing_delay_ms)
        # FIFO: requests touching the page are handled strictly in arrival order
        self._lock = asyncio.Lock()

    async def scan(self) -> ScanResult:
        async with self._lock:
            fields = await self._registry.scan()
            self._engine.clear_undo()
            return ScanResult(fields=[f.public() for f in fields], excluded=self._registry.excluded)

    def list_fields(self) -> list[FieldInfo]:
        return [f.public() for f in self._registry.fields]

    def get_field(self, field_id: str) -> FieldInfo:
        return self._registry.get(field_id).public()

    async def page_info(self) -> PageInfo:
        async with self._lock:
            raw = await self._driver.evaluate_in_page(PAGE_INFO_JS)
        if not isinstance(raw, dict):
            raise DriverError('Unexpected page info result from page')
        return PageInfo(url=raw.get('url'), title=raw.get('title'))

    async def highlight(self, field_id: str) -> None:
        async with self._lock:
            field = self._registry.get(field_id)
            await self._driver.evaluate_in_page(HIGHLIGHT_FIELD_JS, field.dom_path)

    async def read_value(self, field_id: str) -> str:
        async with self._lock:
            return await self._engine.read_value(self._registry.get(field_id))

    async def set_value(self, field_id: str, text: str) -> None:
        async with self._lock:
            await self._engine.set_value(self._registry.get(field_id), text)

    async def type_keystrokes(self, field_id: str, text: str) -> None:
        async with self._lock:
            await self._engine.type_keystrokes(self._registry.get(field_id), text)

    async def apply(self, field_id: str, text: str) -> ApplyChannel:
        async with self._lock:
            return await self._engine.apply(self._registry.get(field_id), text)

    async def revert(self, field_id: str) -> None:
        async with self._lock:
            await self._engine.revert(self._registry.get(field_id))


def get_plane(request: fastapi.Request) -> ControlPlane:
    """Retrieve the control plane from app.state."""
    control_plane: ControlPlane = request.app.state.plane
    return control_plane


def _fail(status_code: int, message: str) -> fastapi.responses.JSONResponse:
    return fastapi.responses.JSONResponse(status_code=status_code, content={'ok': False, 'error': message})


def create_app(control_plane: ControlPlane, *, on_shutdown: Callable[[], None] | None = None) -> fastapi.FastAPI:
    """Build the FastAPI app serving the Control Protocol for one control plane."""
    app = fastapi.FastAPI(title='Dalil Runner Control Protocol', docs_url=None, redoc_url=None, openapi_url=None)
    app.state.plane = control_plane

    @app.exception_handler(DalilError)
    async def domain_error_handler(request: fastapi.Request, exc: DalilError) -> fastapi.responses.JSONResponse:
        logger.debug(f'{request.method} {request.url.path} -> {type(exc).__name__}: {exc}')
        return _fail(exc.status_code, str(exc))

    @app.exception_handler(fastapi.exceptions.RequestValidationError)
    async def validation_error_handler(
        request: fastapi.Request, exc: fastapi.exceptions.RequestValidationError
    ) -> fastapi.responses.JSONResponse:
        problems = '; '.join(f"{'.'.join(str(p) for p in e['loc'][1:])}: {e['msg']}" for e in exc.errors())
        return _fail(400, f'Invalid request: {problems}')

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: fastapi.Request, exc: StarletteHTTPException
    ) -> fastapi.responses.JSONResponse:
        if exc.status_code == 404:
            return _fail(404, 'Unknown endpoint.')
        return _fail(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: fastapi.Request, exc: Exception) -> fastapi.responses.JSONResponse:
        """Last resort - the controller keeps serving after logging the traceback."""
        tb_str = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        logger.error(f'Unhandled error on {request.method} {request.url.path}\n{tb_str}')
        return _fail(500, f'{type(exc).__name__}: {exc}')

    @app.get('/health')
    async def health(plane: ControlPlane = fastapi.Depends(get_plane)) -> dict[str, typing.Any]:
        return {'ok': True, 'mode': plane.mode, 'startedAt': plane.started_at.isoformat()}

    @app.post('/scan_fields')
    async def scan_fields(plane: ControlPlane = fastapi.Depends(get_plane)) -> dict[str, typing.Any]:
        result = await plane.scan()
        return {'ok': True, **result.to_json_dict()}

    @app.get('/fields')
    async def list_fields(plane: ControlPlane = fastapi.Depends(get_plane)) -> dict[str, typing.Any]:
        """Descriptors from the last scan, without rescanning."""
        return {'ok': True, 'fields': [f.to_json_dict() for f in plane.list_fields()]}

    @app.get('/field/{field_id}')
    async def get_field(
        field_id: str,
        plane: ControlPlane = fastapi.Depends(get_plane),
    ) -> dict[str, typing.Any]:
        return {'ok': True, 'field': plane.get_field(field_id).to_json_dict()}

    @app.get('/page_info')
    async def page_info(plane: ControlPlane = fastapi.Depends(get_plane)) -> dict[str, typing.Any]:
        return {'ok': True, 'page': (await plane.page_info()).to_json_dict()}

    @app.post('/highlight_field')
    async def highlight_field(
        body: FieldRequest,
        plane: ControlPlane = fastapi.Depends(get_plane),
    ) -> dict[str, typing.Any]:
        await plane.highlight(body.field_id)
        return {'ok': True}

    @app.post('/read_field_value')
    async def read_field_value(
        body: FieldRequest,
        plane: ControlPlane = fastapi.Depends(get_plane),
    ) -> dict[str, typing.Any]:
        return {'ok': True, 'value': await plane.read_value(body.field_id)}

    @app.post('/set_field_value')
    async def set_field_value(
        body: FieldTextRequest,
        plane: ControlPlane = fastapi.Depends(get_plane),
    ) -> dict[str, typing.Any]:
        """Programmatic set only. Use /apply_field for set-with-fallback."""
        await plane.set_value(body.field_id, body.text)
        return {'ok': True}

    @app.post('/type_into_field')
    async def type_into_field(
        body: FieldTextRequest,
        plane: ControlPlane = fastapi.Depends(get_plane),
    ) -> dict[str, typing.Any]:
        await plane.type_keystrokes(body.field_id, body.text)
        return {'ok': True}

    @app.post('/apply_field')
    async def apply_field(
        body: FieldTextRequest,
        plane: ControlPlane = fastapi.Depends(get_plane),
    ) -> dict[str, typing.Any]:
        channel = await plane.apply(body.field_id, body.text)
        return {'ok': True, 'channel': channel}

    @app.post('/revert_field')
    async def revert_field(
        body: FieldRequest,
        plane: ControlPlane = fastapi.Depends(get_plane),
    ) -> dict[str, typing.Any]:
        await plane.revert(body.field_id)
        return {'ok': True}

    @app.post('/shutdown')
    async def shutdown() -> dict[str, typing.Any]:
        """Ask the controller to stop. The response is sent before the listener closes."""
        if on_shutdown is None:
            raise UsageError('Shutdown is not available on this runner.')
        logger.info('Shutdown requested over the control protocol')
        on_shutdown()
        return {'ok': True}

    return app
