"""
Post-bind activation.

Once the HTTPS listener is up the hub can reach our callbacks, so the
webhook manager may load its stored subscriptions and the seed policy may
request new ones. Both run in a background task: the service keeps serving
whether or not they succeed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from streamhooks.webhooks.manager import WebhookManager

logger = logging.getLogger(__name__)

SeedPolicy = Callable[[WebhookManager], Awaitable[Any]]


class ActivationHook:
    """Runs ``manager.init()`` and then ``seed(manager)``, at most once."""

    def __init__(self, manager: WebhookManager, seed: SeedPolicy) -> None:
        self.manager = manager
        self.seed = seed
        self._task: Optional[asyncio.Task] = None

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def scheduled(self) -> bool:
        return self._task is not None

    def schedule(self) -> bool:
        """Start the activation task; returns False if it was already scheduled."""
        if self._task is not None:
            logger.debug("Activation already scheduled")
            return False
        self._task = asyncio.create_task(self._run(), name="activation")
        return True

    async def _run(self) -> None:
        try:
            await self.manager.init()
        except Exception:
            logger.exception("Webhook manager initialization failed, skipping seed")
            return

        try:
            result = await self.seed(self.manager)
        except Exception:
            logger.exception("Seeding subscriptions failed")
            return
        logger.info(
            "Activation complete",
            extra={"seeded": len(result) if isinstance(result, list) else None},
        )

    async def cancel(self) -> None:
        """Cancel a still running activation and wait for it to finish."""
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        logger.info("Activation cancelled")
