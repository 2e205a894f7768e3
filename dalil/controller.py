"""Session Lifecycle - the long-running controller behind `dalil run`.

Startup order (each step fails fast with EnvironmentNotReadyError):
    1. Refuse to start if a live controller already owns the data directory
    2. Open the browser session (managed profile or attach over CDP)
    3. Install the Safety Guard on the context, before any page is used
    4. Bind the loopback listener, then publish the ConnectionDescriptor

Shutdown order (SIGINT, SIGTERM or POST /shutdown):
    1. Stop accepting requests and close the listener
    2. Release the browser context/connection and the driver
    3. Remove the ConnectionDescriptor - always, even if 1 or 2 failed

The descriptor is published only after the listener is accepting, so a client
that finds it can connect; it is removed last, so it never outlives a stop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import socket
from collections.abc import Awaitable, Callable, Iterator
from datetime import UTC, datetime
from typing import Protocol

import uvicorn

from dalil.driver.adapter import BrowserSession, DriverAdapter, PlaywrightDriver
from dalil.errors import EnvironmentNotReadyError
from dalil.paths import DataPaths
from dalil.repositories.connection import ConnectionStore
from dalil.repositories.snapshot import SnapshotStore
from dalil.schemas.config import DalilConfig
from dalil.schemas.runtime import ConnectionDescriptor, RunnerMode
from dalil.server import ControlPlane, create_app
from dalil.services.safety import GuardedContext, SafetyGuard

__all__ = [
    'Controller',
]

logger = logging.getLogger(__name__)

LOOPBACK_HOST = '127.0.0.1'
STARTUP_POLL_SECONDS = 0.02


class ManagedSession(GuardedContext, Protocol):
    async def close(self) -> None: ...


type SessionOpener = Callable[[], Awaitable[ManagedSession]]
type DriverFactory = Callable[[ManagedSession], DriverAdapter]


class _ListenerServer(uvicorn.Server):
    """uvicorn server that leaves process signals to the Controller."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


class Controller:
    """Owns the browser session, the control plane and the listener for one `dalil run`."""

    def __init__(
        self,
        paths: DataPaths,
        config: DalilConfig,
        *,
        mode: RunnerMode,
        cdp_url: str | None = None,
        port: int | None = None,
        open_session: SessionOpener | None = None,
        make_driver: DriverFactory | None = None,
    ) -> None:
        self.paths = paths
        self.config = config
        self.mode: RunnerMode = mode
        self.port = config.runner_port if port is None else port
        self.guard = SafetyGuard()
        self.descriptor: ConnectionDescriptor | None = None
        self._cdp_url = cdp_url
        self._open_session = open_session or self._open_browser_session
        self._make_driver = make_driver or self._make_playwright_driver
        self._store = ConnectionStore(paths.connection_path, paths.connection_lock_path)
        self._session: ManagedSession | None = None
        self._server: _ListenerServer | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._stopped = False

    async def run(self) -> None:
        """Start, serve until a stop is requested, then shut down in order."""
        await self.start()
        self._install_signal_handlers()
        try:
            await self.wait_closed()
        finally:
            self._remove_signal_handlers()
            await self.stop()

    async def start(self) -> ConnectionDescriptor:
        """Bring the controller up and publish its ConnectionDescriptor.

        The descriptor lock is held from the liveness check until the publish, so a
        concurrent `dalil run` on the same data directory waits and is then refused.
        On any failure, whatever was already acquired is released before raising.

        Raises:
            EnvironmentNotReadyError: Another controller is live, the browser is not
                available, or the port cannot be bound.
        """
        with self._store.hold_lock():
            existing = self._store.load_live()
            if existing is not None:
                raise EnvironmentNotReadyError(
                    f'Runner is already active (port {existing.port}, pid {existing.pid}). Stop it with `dalil stop`.'
                )

            try:
                self.descriptor = await self._start_listening()
                self._store.publish(self.descriptor)
            except BaseException:
                await self.stop()
                raise

        logger.info(f'Dalil Runner started. mode={self.mode} port={self.port}')
        return self.descriptor

    async def _start_listening(self) -> ConnectionDescriptor:
        self._session = await self._open_session()
        await self.guard.install(self._session)

        started_at = datetime.now(UTC)
        plane = ControlPlane(
            self._make_driver(self._session),
            mode=self.mode,
            started_at=started_at,
            snapshot_store=SnapshotStore(self.paths.snapshot_path, self.paths.snapshot_lock_path),
            typing_delay_ms=self.config.typing_delay_ms,
        )
        sock = _bind_loopback(self.port)
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            create_app(plane, on_shutdown=self.request_stop),
            log_level='warning',
            lifespan='off',
        )
        self._server = _ListenerServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))
        await self._wait_listening()

        return ConnectionDescriptor(port=self.port, mode=self.mode, started_at=started_at, pid=os.getpid())

    def request_stop(self) -> None:
        """Ask the listener to finish; run() then completes the shutdown sequence."""
        if self._server is not None:
            self._server.should_exit = True

    async def wait_closed(self) -> None:
        if self._serve_task is not None:
            await self._serve_task

    async def stop(self) -> None:
        """Close the listener, release the browser, remove the descriptor (idempotent)."""
        if self._stopped:
            return
        self._stopped = True
        try:
            try:
                await self._close_listener()
            finally:
                if self._session is not None:
                    await self._session.close()
        finally:
            self._store.remove(pid=os.getpid())
            logger.info('Dalil Runner stopped')

    async def _close_listener(self) -> None:
        if self._server is None or self._serve_task is None:
            return
        self._server.should_exit = True
        try:
            await self._serve_task
        except SystemExit as e:
            # uvicorn exits the process on startup failures
            logger.warning(f'Listener exited with status {e.code}')

    async def _wait_listening(self) -> None:
        assert self._server is not None and self._serve_task is not None
        while not self._server.started:
            if self._serve_task.done():
                raise EnvironmentNotReadyError(f'Control listener failed to start on {LOOPBACK_HOST}:{self.port}')
            await asyncio.sleep(STARTUP_POLL_SECONDS)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):  # Windows event loops
                loop.add_signal_handler(sig, self.request_stop)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)

    async def _open_browser_session(self) -> ManagedSession:
        return await BrowserSession.open(self.mode, profile_dir=self.paths.profile_dir, cdp_url=self._cdp_url)

    def _make_playwright_driver(self, session: ManagedSession) -> DriverAdapter:
        assert isinstance(session, BrowserSession)
        return PlaywrightDriver(session, timeout_seconds=self.config.page_timeout_seconds)


def _bind_loopback(port: int) -> socket.socket:
    """Bind the listener to the loopback interface only. Port 0 picks a free port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((LOOPBACK_HOST, port))
    except OSError as e:
        sock.close()
        raise EnvironmentNotReadyError(f'Cannot listen on {LOOPBACK_HOST}:{port}: {e.strerror or e}') from e
    return sock
