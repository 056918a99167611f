"""
Startup sequence.

``StartupSequencer.run()`` brings the service up in a fixed order, each
step depending on the state left by the previous ones:

1. open persistence
2. synchronize schema
3. register authorization callback
4. construct subscription manager
5. attach renewal scheduler
6. register webhook routes
7. register application routes
8. load TLS material
9. bind plain listener
10. bind encrypted listener, then schedule the activation hook

Missing or unreadable TLS files only disable the encrypted listener. Every
other failure is fatal: the resources acquired so far are released in
reverse order and the error propagates as ``StartupError``.
"""

import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, List, Optional

from fastapi import FastAPI

from streamhooks.api.routers.oauth import (
    AuthorizedCallback,
    OAuthFlowConfig,
    setup_oauth_routes,
    store_tokens_in_session,
)
from streamhooks.api.routes import setup_routes
from streamhooks.core.config import Settings
from streamhooks.core.database import Database
from streamhooks.lifecycle.activation import ActivationHook, SeedPolicy
from streamhooks.lifecycle.phases import LifecyclePhase, PhaseTracker
from streamhooks.lifecycle.resources import (
    DatabaseResource,
    ListenerResource,
    ManagedResource,
    ManagerResource,
)
from streamhooks.lifecycle.tls import TLSMaterialBundle, TLSMaterialError, load_tls_material
from streamhooks.webhooks import create_renewal_scheduler, create_webhook_manager
from streamhooks.webhooks.handlers import default_handlers
from streamhooks.webhooks.manager import WebhookHandlers, WebhookManager
from streamhooks.webhooks.retry import RetryPolicy
from streamhooks.webhooks.scheduling import RenewalScheduler
from streamhooks.webhooks.seeding import add_listen_to_random_streamers

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """A startup step failed; the process must not keep running."""

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"startup step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause


@dataclass
class StartupCollaborators:
    """
    The pieces the startup sequence wires together.

    Defaults build the real service; tests replace single entries.
    """

    install_oauth: Callable[[OAuthFlowConfig], None] = setup_oauth_routes
    on_authorized: AuthorizedCallback = store_tokens_in_session
    create_scheduler: Callable[[Settings], RenewalScheduler] = create_renewal_scheduler
    build_manager: Callable[..., WebhookManager] = create_webhook_manager
    handlers: WebhookHandlers = field(default_factory=default_handlers)
    install_routes: Callable[[FastAPI, WebhookManager, Database], None] = setup_routes
    load_tls: Callable[..., Awaitable[Optional[TLSMaterialBundle]]] = load_tls_material
    create_listener: Callable[..., ListenerResource] = ListenerResource
    seed: Optional[SeedPolicy] = None

    def seed_policy(self, settings: Settings) -> SeedPolicy:
        if self.seed is not None:
            return self.seed
        return functools.partial(
            add_listen_to_random_streamers,
            count=settings.SEED_STREAM_COUNT,
            policy=RetryPolicy(max_retries=settings.SEED_MAX_RETRIES),
        )


@dataclass
class Runtime:
    """Everything a successful startup leaves running."""

    settings: Settings
    app: FastAPI
    phases: PhaseTracker
    database: DatabaseResource
    scheduler: Optional[RenewalScheduler] = None
    manager: Optional[ManagerResource] = None
    tls: Optional[TLSMaterialBundle] = None
    http_listener: Optional[ListenerResource] = None
    https_listener: Optional[ListenerResource] = None
    activation: Optional[ActivationHook] = None

    def acquired(self) -> List[ManagedResource]:
        """Started resources, in acquisition order."""
        resources = [self.database, self.manager, self.http_listener, self.https_listener]
        return [r for r in resources if r is not None and r.is_started]


class StartupSequencer:
    """Runs the startup steps once."""

    def __init__(
        self,
        settings: Settings,
        app: FastAPI,
        database: Database,
        *,
        collaborators: Optional[StartupCollaborators] = None,
        phases: Optional[PhaseTracker] = None,
    ) -> None:
        self.settings = settings
        self.collaborators = collaborators or StartupCollaborators()
        self.phases = phases or PhaseTracker()
        self.runtime = Runtime(
            settings=settings,
            app=app,
            phases=self.phases,
            database=DatabaseResource(database),
        )
        self._started = False

    async def run(self) -> Runtime:
        """
        Bring the service up.

        Returns:
            Runtime: The running resources, handed to the shutdown sequence

        Raises:
            StartupError: If a step fails; acquired resources are released first
        """
        if self._started:
            raise RuntimeError("startup already ran")
        self._started = True

        runtime = self.runtime
        try:
            await self._step("open persistence", runtime.database.start)
            await self._step("synchronize schema", runtime.database.sync)
            self.phases.advance(LifecyclePhase.PERSISTENCE_READY)

            await self._step("register authorization callback", self._register_oauth)
            await self._step("construct subscription manager", self._construct_manager)
            await self._step("attach renewal scheduler", self._attach_scheduler)
            await self._step("register webhook routes", self._manager.install_routes)
            await self._step("register application routes", self._register_routes)
            await self._step("load TLS material", self._load_tls)

            await self._step("bind plain listener", self._bind_http)
            self.phases.advance(LifecyclePhase.LISTENING)

            await self._step("bind encrypted listener", self._bind_https)
            self.phases.advance(LifecyclePhase.ACTIVE)
        except StartupError:
            await self._rollback()
            self.phases.advance(LifecyclePhase.TERMINATED)
            raise

        return runtime

    async def _step(self, name: str, func: Callable[[], Any]) -> None:
        logger.debug("Startup step", extra={"step": name})
        try:
            result = func()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Startup step '{name}' failed",
                extra={"step": name, "error": str(e)},
                exc_info=True,
            )
            raise StartupError(name, e) from e

    @property
    def _manager(self) -> WebhookManager:
        return self.runtime.manager.manager

    # Steps
    # ──────────────────────────────────────────────────────────────────────

    def _register_oauth(self) -> None:
        settings = self.settings
        self.collaborators.install_oauth(
            OAuthFlowConfig(
                app=self.runtime.app,
                callback=self.collaborators.on_authorized,
                client_id=settings.CLIENT_ID,
                client_secret=settings.CLIENT_SECRET,
                force_verify=settings.OAUTH_FORCE_VERIFY,
                redirect_uri=settings.REDIRECT_URI,
                scopes=settings.OAUTH_SCOPES,
                authorize_url=settings.OAUTH_AUTHORIZE_URL,
                token_url=settings.OAUTH_TOKEN_URL,
                http_timeout=settings.HTTP_TIMEOUT,
            )
        )

    def _construct_manager(self) -> None:
        scheduler = self.collaborators.create_scheduler(self.settings)
        manager = self.collaborators.build_manager(
            self.settings,
            self.runtime.app,
            self.runtime.database.database,
            scheduler,
            self.collaborators.handlers,
        )
        self.runtime.scheduler = scheduler
        self.runtime.manager = ManagerResource(manager)

    def _attach_scheduler(self) -> None:
        self.runtime.scheduler.attach(self._manager)

    def _register_routes(self) -> None:
        self.collaborators.install_routes(
            self.runtime.app, self._manager, self.runtime.database.database
        )

    async def _load_tls(self) -> None:
        settings = self.settings
        try:
            self.runtime.tls = await self.collaborators.load_tls(
                settings.CERT_KEY_PATH, settings.CERT_PATH, settings.CERT_CHAIN_PATH
            )
        except TLSMaterialError as e:
            logger.error(
                f"TLS file {e.path} is unreadable, HTTPS listener disabled",
                extra={"path": e.path, "error": str(e.cause)},
            )
            self.runtime.tls = None

    def _listener(self, name: str, port: int, tls: Optional[TLSMaterialBundle] = None) -> ListenerResource:
        return self.collaborators.create_listener(
            name,
            self.runtime.app,
            host=self.settings.BIND_HOST,
            port=port,
            tls=tls,
            bind_timeout=self.settings.LISTENER_BIND_TIMEOUT,
        )

    async def _bind_http(self) -> None:
        listener = self._listener("http", self.settings.HTTP_PORT)
        self.runtime.http_listener = listener
        await listener.start()
        logger.info(f"HTTP listening on port {listener.bound_port}", extra={"port": listener.bound_port})

    async def _bind_https(self) -> None:
        if self.runtime.tls is None:
            logger.info("HTTPS listener disabled, webhook activation skipped")
            return

        listener = self._listener("https", self.settings.HTTPS_PORT, self.runtime.tls)
        self.runtime.https_listener = listener
        await listener.start()
        logger.info(f"HTTPS listening on port {listener.bound_port}", extra={"port": listener.bound_port})

        activation = ActivationHook(self._manager, self.collaborators.seed_policy(self.settings))
        self.runtime.activation = activation
        activation.schedule()

    # Rollback
    # ──────────────────────────────────────────────────────────────────────

    async def _rollback(self) -> None:
        for resource in reversed(self.runtime.acquired()):
            try:
                await resource.stop()
            except Exception:
                logger.exception("Rollback failed", extra={"resource": resource.name})
            else:
                logger.info("Rolled back", extra={"resource": resource.name})
