"""
Ownership wrappers around the process's long-lived resources.

Every handle tracks its state and last error and releases its resource at
most once. ``stop()`` on a handle that never started (or already stopped)
is a no-op, so rollback and shutdown can call it unconditionally.
"""

import asyncio
import contextlib
import enum
import logging
import socket
from abc import ABC, abstractmethod
from typing import Optional

import uvicorn
from fastapi import FastAPI

from streamhooks.core.database import Database
from streamhooks.lifecycle.tls import TLSMaterialBundle, create_server_ssl_context
from streamhooks.webhooks.manager import WebhookManager

logger = logging.getLogger(__name__)


class ResourceState(str, enum.Enum):
    PENDING = "pending"
    STARTED = "started"
    STOPPED = "stopped"
    FAILED = "failed"


class ResourceStateError(RuntimeError):
    """``start()`` called on a resource that is not pending."""


class ListenerBindError(Exception):
    """A listener could not bind its port or did not come up in time."""

    def __init__(self, name: str, port: int, cause: Optional[BaseException] = None):
        message = f"{name} listener failed to bind port {port}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.name = name
        self.port = port
        self.cause = cause


class ManagedResource(ABC):
    """Base class for resource handles."""

    kind = "resource"

    def __init__(self, name: str, *, started: bool = False) -> None:
        self.name = name
        self.state = ResourceState.STARTED if started else ResourceState.PENDING
        self.last_error: Optional[BaseException] = None

    @property
    def is_started(self) -> bool:
        return self.state is ResourceState.STARTED

    async def start(self) -> None:
        """
        Acquire the resource.

        Raises:
            ResourceStateError: If the resource is not pending
        """
        if self.state is not ResourceState.PENDING:
            raise ResourceStateError(f"{self.name} is {self.state.value}, cannot start")
        try:
            await self._acquire()
        except BaseException as e:
            self.state = ResourceState.FAILED
            self.last_error = e
            raise
        self.state = ResourceState.STARTED

    async def stop(self) -> None:
        """Release the resource if it is started; errors propagate after being recorded."""
        if self.state is not ResourceState.STARTED:
            return
        # Marked before releasing so a failed or cancelled release is never retried
        self.state = ResourceState.STOPPED
        try:
            await self._release()
        except BaseException as e:
            self.state = ResourceState.FAILED
            self.last_error = e
            raise

    async def _acquire(self) -> None:
        return None

    @abstractmethod
    async def _release(self) -> None:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, state={self.state.value})"


class DatabaseResource(ManagedResource):
    """The persistence connection."""

    kind = "persistence"

    def __init__(self, database: Database, name: str = "persistence") -> None:
        super().__init__(name)
        self.database = database

    async def _acquire(self) -> None:
        await self.database.open()

    async def sync(self) -> None:
        await self.database.sync()

    async def _release(self) -> None:
        await self.database.close()


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the orchestrator."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class ListenerResource(ManagedResource):
    """
    A uvicorn server on a socket bound by the handle itself.

    Binding up front makes a taken port a startup error instead of a log line
    from the server task. The server runs without uvicorn's signal handlers
    and lifespan; both belong to the orchestrator.
    """

    kind = "listener"

    def __init__(
        self,
        name: str,
        app: FastAPI,
        *,
        host: str,
        port: int,
        tls: Optional[TLSMaterialBundle] = None,
        bind_timeout: float = 10.0,
        backlog: int = 2048,
    ) -> None:
        super().__init__(name)
        self.app = app
        self.host = host
        self.port = port
        self.tls = tls
        self.bind_timeout = bind_timeout
        self.backlog = backlog
        self._socket: Optional[socket.socket] = None
        self._server: Optional[EmbeddedServer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def scheme(self) -> str:
        return "https" if self.tls is not None else "http"

    @property
    def bound_port(self) -> Optional[int]:
        """Actual port, differs from ``port`` when binding port 0."""
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
        except OSError as e:
            sock.close()
            raise ListenerBindError(self.name, self.port, e) from e
        sock.setblocking(False)
        return sock

    def _build_server(self) -> EmbeddedServer:
        config = uvicorn.Config(
            self.app,
            lifespan="off",
            log_config=None,
            access_log=False,
            server_header=False,
        )
        config.load()
        if self.tls is not None:
            try:
                config.ssl = create_server_ssl_context(self.tls)
            except (OSError, ValueError) as e:
                raise ListenerBindError(self.name, self.port, e) from e
        return EmbeddedServer(config)

    async def _acquire(self) -> None:
        server = self._build_server()
        sock = self._bind()
        self._socket = sock
        self._server = server
        self._task = asyncio.create_task(server.serve(sockets=[sock]), name=f"listener-{self.name}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.bind_timeout
        while not server.started:
            if self._task.done():
                await self._discard()
                cause = None if self._task.cancelled() else self._task.exception()
                raise ListenerBindError(self.name, self.port, cause)
            if loop.time() >= deadline:
                await self._discard()
                raise ListenerBindError(
                    self.name, self.port, TimeoutError(f"not started after {self.bind_timeout}s")
                )
            await asyncio.sleep(0.01)

        logger.info(
            "Listener started",
            extra={"listener": self.name, "scheme": self.scheme, "port": self.bound_port},
        )

    async def _discard(self) -> None:
        if self._task is not None and not self._task.done():
            self._server.should_exit = True
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    async def _release(self) -> None:
        """Stop accepting connections and let in-flight requests finish."""
        try:
            self._server.should_exit = True
            await self._task
        finally:
            self._socket.close()
            self._socket = None
        logger.info("Listener stopped", extra={"listener": self.name, "port": self.port})


class ManagerResource(ManagedResource):
    """The webhook manager; started by construction, released by ``destroy()``."""

    kind = "subscription-manager"

    def __init__(self, manager: WebhookManager, name: str = "subscription manager") -> None:
        super().__init__(name, started=True)
        self.manager = manager

    async def _release(self) -> None:
        await self.manager.destroy()
