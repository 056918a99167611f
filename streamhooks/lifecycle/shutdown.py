"""
Shutdown sequence.

Teardown is best effort: every step runs even when an earlier one failed,
and each outcome is recorded in a ``ShutdownReport``. The process exits
with 0 only if every step succeeded.

Order:

1. close encrypted listener (if bound)
2. close plain listener
3. close persistence
4. destroy subscription manager
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import List, Optional, Tuple

from streamhooks.lifecycle.phases import LifecyclePhase
from streamhooks.lifecycle.startup import Runtime
from streamhooks.observability import shutdown_step_failures_total

logger = logging.getLogger(__name__)


class ShutdownStepTimeout(TimeoutError):
    """A teardown step did not finish within the step timeout."""

    def __init__(self, step: str, timeout: float):
        super().__init__(f"'{step}' did not finish within {timeout}s")
        self.step = step
        self.timeout = timeout


@dataclass(frozen=True)
class ShutdownStepResult:
    name: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ShutdownReport:
    """Append-only record of the teardown steps."""

    def __init__(self) -> None:
        self._results: List[ShutdownStepResult] = []

    def record(self, result: ShutdownStepResult) -> None:
        self._results.append(result)

    @property
    def results(self) -> Tuple[ShutdownStepResult, ...]:
        return tuple(self._results)

    @property
    def step_names(self) -> List[str]:
        return [r.name for r in self._results]

    @property
    def failures(self) -> List[ShutdownStepResult]:
        return [r for r in self._results if not r.ok]

    @property
    def exit_code(self) -> int:
        return 1 if self.failures else 0

    def __len__(self) -> int:
        return len(self._results)


class ShutdownSequencer:
    """
    Tears down a ``Runtime`` exactly once.

    ``request()`` may be called from a signal handler any number of times;
    ``run()`` may be awaited by several callers and executes the steps once.
    """

    def __init__(self, runtime: Runtime, *, step_timeout: Optional[float] = None) -> None:
        self.runtime = runtime
        self.step_timeout = step_timeout
        self._requested = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def requested(self) -> bool:
        return self._requested.is_set()

    def request(self, reason: str = "requested") -> bool:
        """Ask for shutdown; returns False if it was already requested."""
        if self._requested.is_set():
            logger.debug("Shutdown already requested", extra={"reason": reason})
            return False
        logger.info("Shutdown requested", extra={"reason": reason})
        self._requested.set()
        return True

    async def wait(self) -> None:
        await self._requested.wait()

    async def run(self) -> ShutdownReport:
        """Run the teardown (once) and return its report."""
        self._requested.set()
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="shutdown")
        return await asyncio.shield(self._task)

    def _steps(self) -> List[Tuple[str, Callable[[], Awaitable[None]]]]:
        runtime = self.runtime
        steps = []
        if runtime.https_listener is not None:
            steps.append(("close encrypted listener", runtime.https_listener.stop))
        if runtime.http_listener is not None:
            steps.append(("close plain listener", runtime.http_listener.stop))
        steps.append(("close persistence", runtime.database.stop))
        if runtime.manager is not None:
            steps.append(("destroy subscription manager", runtime.manager.stop))
        return steps

    async def _run(self) -> ShutdownReport:
        phases = self.runtime.phases
        phases.advance(LifecyclePhase.SHUTTING_DOWN)
        report = ShutdownReport()

        if self.runtime.activation is not None:
            await self.runtime.activation.cancel()

        for name, step in self._steps():
            result = await self._run_step(name, step)
            report.record(result)

        phases.advance(LifecyclePhase.TERMINATED)
        logger.info(
            "Shutdown complete",
            extra={"exit_code": report.exit_code, "failed_steps": [r.name for r in report.failures]},
        )
        return report

    async def _run_step(self, name: str, step: Callable[[], Awaitable[None]]) -> ShutdownStepResult:
        error: Optional[BaseException] = None
        try:
            if self.step_timeout is None:
                await step()
            else:
                await asyncio.wait_for(step(), timeout=self.step_timeout)
        except asyncio.TimeoutError as e:
            error = e if self.step_timeout is None else ShutdownStepTimeout(name, self.step_timeout)
        except Exception as e:
            error = e

        if error is None:
            logger.debug("Shutdown step complete", extra={"step": name})
            return ShutdownStepResult(name)

        shutdown_step_failures_total.labels(step=name).inc()
        logger.error(
            f"Error while {name}",
            extra={"step": name, "error": str(error)},
            exc_info=(type(error), error, error.__traceback__),
        )
        return ShutdownStepResult(name, error)
