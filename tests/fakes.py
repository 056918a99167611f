"""Settings factory and fake collaborators shared by the tests."""

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

from streamhooks.core.config import Settings
from streamhooks.lifecycle.resources import ManagedResource
from streamhooks.lifecycle.startup import StartupCollaborators


def make_settings(**overrides: Any) -> Settings:
    """Settings built from explicit values, never from .env."""
    values: Dict[str, Any] = {
        "SESSION_SECRET": "test-session-secret",
        "CLIENT_ID": "test-client",
        "CLIENT_SECRET": "test-secret",
        "HOST_NAME": "hooks.example.com",
        "REDIRECT_URI": "http://localhost:8080/auth/callback",
        "HTTP_PORT": 8080,
        "HTTPS_PORT": 8443,
        "CERT_KEY_PATH": None,
        "CERT_PATH": None,
        "CERT_CHAIN_PATH": None,
        "SHUTDOWN_STEP_TIMEOUT": 5.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeListener(ManagedResource):
    """Listener that records its lifecycle into a shared event log."""

    kind = "listener"

    def __init__(
        self,
        name,
        app,
        *,
        host,
        port,
        tls=None,
        bind_timeout=10.0,
        events=None,
        fail_start=None,
        fail_stop=None,
    ):
        super().__init__(name)
        self.app = app
        self.host = host
        self.port = port
        self.tls = tls
        self.events = events if events is not None else []
        self.fail_start = fail_start
        self.fail_stop = fail_stop

    @property
    def bound_port(self) -> int:
        return self.port

    async def _acquire(self) -> None:
        if self.fail_start is not None:
            raise self.fail_start
        self.events.append(f"bind {self.name}")

    async def _release(self) -> None:
        self.events.append(f"close {self.name}")
        if self.fail_stop is not None:
            raise self.fail_stop


class FakeEnvironment:
    """
    Fakes for every startup collaborator, recording calls in ``events``.

    ``fail`` maps an event name (e.g. ``"sync"`` or ``"bind https"``) to the
    exception that call raises.
    """

    def __init__(self, tls: Optional[object] = None, fail: Optional[Dict[str, BaseException]] = None):
        self.events: List[str] = []
        self.fail = fail or {}
        self.tls = tls
        self.listeners: Dict[str, FakeListener] = {}

        self.database = MagicMock(name="database")
        self.database.open = AsyncMock(side_effect=self._recorder("open"))
        self.database.sync = AsyncMock(side_effect=self._recorder("sync"))
        self.database.close = AsyncMock(side_effect=self._recorder("close persistence"))

        self.scheduler = MagicMock(name="scheduler")
        self.scheduler.attach = MagicMock(side_effect=self._recorder("attach"))

        self.manager = MagicMock(name="manager")
        self.manager.install_routes = MagicMock(side_effect=self._recorder("webhook routes"))
        self.manager.init = AsyncMock(side_effect=self._recorder("init"))
        self.manager.destroy = AsyncMock(side_effect=self._recorder("destroy manager"))

        self.seed = AsyncMock(side_effect=self._recorder("seed"))

    def _recorder(self, event: str):
        def record(*args, **kwargs):
            self.events.append(event)
            if event in self.fail:
                raise self.fail[event]
            return None

        return record

    async def load_tls(self, key_path, cert_path, chain_path):
        self.events.append("load tls")
        if "load tls" in self.fail:
            raise self.fail["load tls"]
        return self.tls

    def create_listener(self, name, app, **kwargs) -> FakeListener:
        listener = FakeListener(
            name,
            app,
            events=self.events,
            fail_start=self.fail.get(f"bind {name}"),
            fail_stop=self.fail.get(f"close {name}"),
            **kwargs,
        )
        self.listeners[name] = listener
        return listener

    def collaborators(self) -> StartupCollaborators:
        return StartupCollaborators(
            install_oauth=self._recorder("oauth routes"),
            create_scheduler=lambda settings: self.scheduler,
            build_manager=lambda *args: self.manager,
            install_routes=self._recorder("app routes"),
            load_tls=self.load_tls,
            create_listener=self.create_listener,
            seed=self.seed,
        )


class InMemoryPersistence:
    """Dict-backed webhook persistence."""

    def __init__(self, subscriptions=None):
        self.saved = {s.id: s.model_copy() for s in (subscriptions or [])}
        self.deleted: List[str] = []

    async def save(self, subscription):
        self.saved[subscription.id] = subscription.model_copy()

    async def get(self, subscription_id):
        return self.saved.get(subscription_id)

    async def list_all(self):
        return [s.model_copy() for s in self.saved.values()]

    async def delete(self, subscription_id):
        self.saved.pop(subscription_id, None)
        self.deleted.append(subscription_id)
