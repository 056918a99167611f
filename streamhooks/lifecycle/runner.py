"""
Process entry point.

``run()`` reads the settings once, configures logging and hands over to the
``Orchestrator``, which owns the database and the app for the lifetime of
the process:

    startup  ->  wait for SIGINT/SIGTERM  ->  shutdown  ->  exit code
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

from fastapi import FastAPI
from pydantic import ValidationError

from streamhooks.core.config import Settings
from streamhooks.core.database import Database
from streamhooks.lifecycle.phases import PhaseTracker
from streamhooks.lifecycle.shutdown import ShutdownReport, ShutdownSequencer
from streamhooks.lifecycle.startup import Runtime, StartupCollaborators, StartupError, StartupSequencer
from streamhooks.main import create_app
from streamhooks.observability import configure_logging

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Orchestrator:
    """
    Runs the service from startup to exit code.

    Example:
        >>> orchestrator = Orchestrator(Settings())
        >>> exit_code = asyncio.run(orchestrator.run())
    """

    def __init__(
        self,
        settings: Settings,
        *,
        database: Optional[Database] = None,
        app: Optional[FastAPI] = None,
        collaborators: Optional[StartupCollaborators] = None,
    ) -> None:
        self.settings = settings
        self.database = database or Database(settings.DATABASE_URL, echo=settings.DB_ECHO)
        self.app = app or create_app(settings, self.database)
        self.collaborators = collaborators
        self.phases = PhaseTracker()
        self.runtime: Optional[Runtime] = None
        self.report: Optional[ShutdownReport] = None
        self._shutdown: Optional[ShutdownSequencer] = None
        self._early_request: Optional[str] = None

    def request_shutdown(self, reason: str = "requested") -> None:
        """Ask the service to shut down; safe to call from a signal handler."""
        if self._shutdown is None:
            # Startup still running, honoured as soon as it completes
            if self._early_request is None:
                logger.info("Shutdown requested during startup", extra={"reason": reason})
                self._early_request = reason
            return
        self._shutdown.request(reason)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> List[signal.Signals]:
        installed = []
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError):
                logger.warning("Cannot install signal handler", extra={"signal": sig.name})
                continue
            installed.append(sig)
        return installed

    def _ignore_signal(self, name: str) -> None:
        logger.info("Signal ignored, service already terminated", extra={"signal": name})

    async def run(self) -> int:
        """
        Start the service, serve until a shutdown request, tear down.

        Returns:
            int: Process exit code, 0 if startup and every teardown step succeeded
        """
        loop = asyncio.get_running_loop()
        installed = self._install_signal_handlers(loop)
        try:
            logger.info(
                f"Starting {self.settings.APP_NAME} v{self.settings.APP_VERSION}",
                extra={"debug": self.settings.DEBUG},
            )
            sequencer = StartupSequencer(
                self.settings,
                self.app,
                self.database,
                collaborators=self.collaborators,
                phases=self.phases,
            )
            try:
                self.runtime = await sequencer.run()
            except StartupError as e:
                logger.critical(
                    "Startup failed",
                    extra={"step": e.step, "error": str(e.cause)},
                )
                return 1

            self._shutdown = ShutdownSequencer(
                self.runtime, step_timeout=self.settings.shutdown_step_timeout
            )
            if self._early_request is not None:
                self._shutdown.request(self._early_request)

            await self._shutdown.wait()
            self.report = await self._shutdown.run()
            return self.report.exit_code
        finally:
            # Removed when the loop closes, after asyncio.run has finished cleanup
            for sig in installed:
                loop.add_signal_handler(sig, self._ignore_signal, sig.name)


def run() -> None:
    """Console entry point."""
    try:
        settings = Settings()
    except ValidationError as e:
        configure_logging()
        logger.critical("Invalid configuration", extra={"error": str(e)})
        sys.exit(1)

    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    orchestrator = Orchestrator(settings)
    sys.exit(asyncio.run(orchestrator.run()))
