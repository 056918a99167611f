"""Unit tests for the renewal scheduler."""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from streamhooks.schemas.webhooks import SubscriptionStatus, WebhookSubscription
from streamhooks.webhooks.scheduling import RenewalScheduler, SchedulerNotAttachedError


def make_subscription(sub_id="sub-1", expires_in=None) -> WebhookSubscription:
    expires_at = None
    if expires_in is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return WebhookSubscription(
        id=sub_id,
        topic="https://api.twitch.tv/helix/streams?user_id=1",
        callback_url=f"https://hooks.example.com/webhooks/{sub_id}",
        secret="s3cret",
        lease_seconds=864000,
        status=SubscriptionStatus.ACTIVE,
        expires_at=expires_at,
    )


def make_manager():
    manager = MagicMock()
    manager.renew = AsyncMock()
    manager.report_error = MagicMock()
    return manager


class TestAttach:
    def test_schedule_before_attach_raises(self):
        scheduler = RenewalScheduler()
        with pytest.raises(SchedulerNotAttachedError):
            scheduler.schedule(make_subscription())
        assert not scheduler.is_attached

    def test_attach_same_manager_twice(self):
        scheduler = RenewalScheduler()
        manager = make_manager()
        scheduler.attach(manager)
        scheduler.attach(manager)
        assert scheduler.manager is manager

    def test_attach_other_manager_raises(self):
        scheduler = RenewalScheduler()
        scheduler.attach(make_manager())
        with pytest.raises(RuntimeError):
            scheduler.attach(make_manager())


class TestDelay:
    def test_renews_margin_before_expiry(self):
        scheduler = RenewalScheduler(renewal_margin=3600)
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        subscription = make_subscription()
        subscription.expires_at = now + timedelta(hours=10)
        assert scheduler.delay_for(subscription, now) == pytest.approx(9 * 3600)

    def test_overdue_renewal_uses_min_delay(self):
        scheduler = RenewalScheduler(renewal_margin=3600, min_delay=5)
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        subscription = make_subscription()
        subscription.expires_at = now + timedelta(minutes=10)
        assert scheduler.delay_for(subscription, now) == 5

    def test_without_expiry(self):
        scheduler = RenewalScheduler(min_delay=1)
        assert scheduler.delay_for(make_subscription()) == 1


@pytest.mark.asyncio
class TestRenewal:
    async def test_due_renewal_calls_manager(self):
        scheduler = RenewalScheduler(renewal_margin=3600)
        manager = make_manager()
        scheduler.attach(manager)

        scheduler.schedule(make_subscription(expires_in=3600))
        await asyncio.sleep(0.05)

        manager.renew.assert_awaited_once_with("sub-1")
        assert scheduler.scheduled == []

    async def test_renewal_failure_is_reported(self):
        scheduler = RenewalScheduler(renewal_margin=3600)
        manager = make_manager()
        error = RuntimeError("hub down")
        manager.renew.side_effect = error
        scheduler.attach(manager)

        scheduler.schedule(make_subscription(expires_in=0))
        await asyncio.sleep(0.05)

        manager.report_error.assert_called_once_with(error, subscription_id="sub-1", operation="renew")

    async def test_reschedule_replaces_pending_renewal(self):
        scheduler = RenewalScheduler(renewal_margin=0)
        scheduler.attach(make_manager())

        scheduler.schedule(make_subscription(expires_in=600))
        scheduler.schedule(make_subscription(expires_in=1200))

        assert scheduler.scheduled == ["sub-1"]
        await scheduler.destroy()

    async def test_cancel(self):
        scheduler = RenewalScheduler(renewal_margin=0)
        manager = make_manager()
        scheduler.attach(manager)

        scheduler.schedule(make_subscription(expires_in=0.05))
        scheduler.cancel("sub-1")
        await asyncio.sleep(0.1)

        manager.renew.assert_not_awaited()
        assert scheduler.scheduled == []

    async def test_destroy_cancels_everything(self):
        scheduler = RenewalScheduler(renewal_margin=0)
        manager = make_manager()
        scheduler.attach(manager)
        scheduler.schedule(make_subscription("a", expires_in=600))
        scheduler.schedule(make_subscription("b", expires_in=600))

        await scheduler.destroy()

        assert scheduler.scheduled == []
        with pytest.raises(RuntimeError):
            scheduler.schedule(make_subscription("c", expires_in=600))
        manager.renew.assert_not_awaited()
