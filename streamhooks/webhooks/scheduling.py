"""
Renewal scheduling for webhook subscriptions.

The scheduler and the manager reference each other: the manager asks the
scheduler to plan a renewal whenever the hub confirms a lease, and the
scheduler calls back into the manager when the renewal is due. The
scheduler is therefore constructed unattached and bound afterwards with
``attach()``; until then every scheduling call raises
``SchedulerNotAttachedError``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Optional

from streamhooks.schemas.webhooks import WebhookSubscription

if TYPE_CHECKING:
    from streamhooks.webhooks.manager import WebhookManager

logger = logging.getLogger(__name__)


class SchedulerNotAttachedError(RuntimeError):
    """The scheduler was used before a manager was attached."""


class RenewalScheduler:
    """
    Timer-driven renewal of subscriptions before their lease expires.

    One asyncio task per subscription sleeps until ``expires_at`` minus
    ``renewal_margin`` seconds and then awaits ``manager.renew(id)``.
    Renewal failures are reported to the manager's error handler.
    """

    def __init__(self, renewal_margin: float = 3600.0, min_delay: float = 0.0) -> None:
        self._renewal_margin = renewal_margin
        self._min_delay = min_delay
        self._manager: Optional[WebhookManager] = None
        self._tasks: Dict[str, asyncio.Task] = {}
        self._destroyed = False

    @property
    def manager(self) -> WebhookManager:
        if self._manager is None:
            raise SchedulerNotAttachedError("renewal scheduler has no manager attached")
        return self._manager

    @property
    def is_attached(self) -> bool:
        return self._manager is not None

    @property
    def scheduled(self) -> list[str]:
        """Ids of subscriptions with a pending renewal."""
        return [sub_id for sub_id, task in self._tasks.items() if not task.done()]

    def attach(self, manager: WebhookManager) -> None:
        if self._manager is not None and self._manager is not manager:
            raise RuntimeError("renewal scheduler is already attached to another manager")
        self._manager = manager

    def delay_for(self, subscription: WebhookSubscription, now: Optional[datetime] = None) -> float:
        """Seconds until the renewal of ``subscription`` is due."""
        if subscription.expires_at is None:
            return self._min_delay
        now = now or datetime.now(timezone.utc)
        remaining = (subscription.expires_at - now).total_seconds() - self._renewal_margin
        return max(remaining, self._min_delay)

    def schedule(self, subscription: WebhookSubscription) -> None:
        """Plan (or re-plan) the renewal of ``subscription``."""
        manager = self.manager
        if self._destroyed:
            raise RuntimeError("renewal scheduler has been destroyed")

        self.cancel(subscription.id)
        delay = self.delay_for(subscription)
        self._tasks[subscription.id] = asyncio.create_task(
            self._renew_later(manager, subscription.id, delay),
            name=f"webhook-renewal-{subscription.id}",
        )
        logger.debug(
            "Scheduled subscription renewal",
            extra={"subscription_id": subscription.id, "delay_seconds": round(delay, 1)},
        )

    def cancel(self, subscription_id: str) -> None:
        task = self._tasks.pop(subscription_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _renew_later(self, manager: WebhookManager, subscription_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        # The renewal re-plans itself through schedule(); drop our entry first
        if self._tasks.get(subscription_id) is asyncio.current_task():
            del self._tasks[subscription_id]
        try:
            await manager.renew(subscription_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            manager.report_error(e, subscription_id=subscription_id, operation="renew")

    async def destroy(self) -> None:
        """Cancel every pending renewal and wait for the tasks to finish."""
        self._destroyed = True
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Renewal scheduler stopped", extra={"cancelled": len(tasks)})
