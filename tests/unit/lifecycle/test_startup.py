"""Unit tests for the startup sequence."""
import logging
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI

from streamhooks.api.routers.oauth import OAuthFlowConfig
from streamhooks.lifecycle.phases import LifecyclePhase, PhaseTracker
from streamhooks.lifecycle.resources import ListenerBindError, ResourceState
from streamhooks.lifecycle.startup import StartupCollaborators, StartupError, StartupSequencer
from streamhooks.lifecycle.tls import TLSMaterialBundle, TLSMaterialError
from tests.fakes import FakeEnvironment, make_settings

BUNDLE = TLSMaterialBundle("key.pem", "cert.pem", "chain.pem", b"key", b"cert", b"chain")

BASE_STEPS = [
    "open",
    "sync",
    "oauth routes",
    "attach",
    "webhook routes",
    "app routes",
    "load tls",
    "bind http",
]


def make_sequencer(env: FakeEnvironment, **settings_overrides) -> StartupSequencer:
    return StartupSequencer(
        make_settings(**settings_overrides),
        FastAPI(),
        env.database,
        collaborators=env.collaborators(),
        phases=PhaseTracker(),
    )


@pytest.mark.asyncio
class TestStartupOrder:
    async def test_without_tls_only_plain_listener(self):
        env = FakeEnvironment(tls=None)
        sequencer = make_sequencer(env)

        runtime = await sequencer.run()

        assert env.events == BASE_STEPS
        assert runtime.http_listener is env.listeners["http"]
        assert runtime.https_listener is None
        assert "https" not in env.listeners
        assert runtime.activation is None
        env.manager.init.assert_not_awaited()
        env.seed.assert_not_awaited()
        assert sequencer.phases.phase is LifecyclePhase.ACTIVE

    async def test_with_tls_binds_https_then_init_then_seed(self):
        env = FakeEnvironment(tls=BUNDLE)
        sequencer = make_sequencer(env, HTTP_PORT=8080, HTTPS_PORT=8443)

        runtime = await sequencer.run()
        await runtime.activation.task

        assert env.events == BASE_STEPS + ["bind https", "init", "seed"]
        assert runtime.https_listener.port == 8443
        assert runtime.https_listener.tls is BUNDLE
        assert runtime.http_listener.port == 8080
        assert runtime.http_listener.tls is None
        env.seed.assert_awaited_once_with(env.manager)

    async def test_listening_logs(self, caplog):
        env = FakeEnvironment(tls=BUNDLE)
        sequencer = make_sequencer(env, HTTP_PORT=8080, HTTPS_PORT=8443)

        with caplog.at_level(logging.INFO, logger="streamhooks.lifecycle.startup"):
            runtime = await sequencer.run()
            await runtime.activation.task

        messages = [record.getMessage() for record in caplog.records]
        assert "HTTP listening on port 8080" in messages
        assert "HTTPS listening on port 8443" in messages

    async def test_phases(self):
        env = FakeEnvironment(tls=None)
        sequencer = make_sequencer(env)
        await sequencer.run()

        phases = [phase for phase, _ in sequencer.phases.history]
        assert phases == [
            LifecyclePhase.INITIALIZING,
            LifecyclePhase.PERSISTENCE_READY,
            LifecyclePhase.LISTENING,
            LifecyclePhase.ACTIVE,
        ]

    async def test_runs_once(self):
        sequencer = make_sequencer(FakeEnvironment())
        await sequencer.run()
        with pytest.raises(RuntimeError):
            await sequencer.run()


@pytest.mark.asyncio
class TestStartupWiring:
    async def test_oauth_config_from_settings(self):
        env = FakeEnvironment()
        installed = []
        collaborators = env.collaborators()
        collaborators.install_oauth = installed.append
        app = FastAPI()
        sequencer = StartupSequencer(
            make_settings(REDIRECT_URI="https://hooks.example.com/auth/twitch"),
            app,
            env.database,
            collaborators=collaborators,
        )

        await sequencer.run()

        (config,) = installed
        assert isinstance(config, OAuthFlowConfig)
        assert config.app is app
        assert config.client_id == "test-client"
        assert config.client_secret == "test-secret"
        assert config.redirect_uri == "https://hooks.example.com/auth/twitch"
        assert config.force_verify is True
        assert config.scopes == ["channel:read:subscriptions", "user:read:email", "moderation:read"]
        assert config.callback is collaborators.on_authorized

    async def test_manager_built_with_handlers_and_attached(self):
        env = FakeEnvironment()
        built = MagicMock(return_value=env.manager)
        collaborators = env.collaborators()
        collaborators.build_manager = built
        settings = make_settings()
        app = FastAPI()
        sequencer = StartupSequencer(settings, app, env.database, collaborators=collaborators)

        runtime = await sequencer.run()

        built.assert_called_once_with(settings, app, env.database, env.scheduler, collaborators.handlers)
        env.scheduler.attach.assert_called_once_with(env.manager)
        assert runtime.manager.manager is env.manager
        assert runtime.manager.state is ResourceState.STARTED

    async def test_default_seed_policy_uses_settings(self):
        collaborators = StartupCollaborators()
        policy = collaborators.seed_policy(make_settings(SEED_STREAM_COUNT=3, SEED_MAX_RETRIES=5))
        assert policy.keywords["count"] == 3
        assert policy.keywords["policy"].max_retries == 5


@pytest.mark.asyncio
class TestStartupFailures:
    async def test_sync_failure_binds_no_listener(self):
        env = FakeEnvironment(tls=BUNDLE, fail={"sync": RuntimeError("disk full")})
        sequencer = make_sequencer(env)

        with pytest.raises(StartupError) as exc_info:
            await sequencer.run()

        assert exc_info.value.step == "synchronize schema"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert env.listeners == {}
        assert "oauth routes" not in env.events
        env.manager.destroy.assert_not_awaited()
        # the opened connection is released again
        assert env.events == ["open", "sync", "close persistence"]
        assert sequencer.phases.phase is LifecyclePhase.TERMINATED

    async def test_open_failure_releases_nothing(self):
        env = FakeEnvironment(fail={"open": OSError("unable to open database file")})
        sequencer = make_sequencer(env)

        with pytest.raises(StartupError) as exc_info:
            await sequencer.run()

        assert exc_info.value.step == "open persistence"
        assert env.events == ["open"]

    async def test_plain_bind_failure_is_fatal(self):
        env = FakeEnvironment(fail={"bind http": ListenerBindError("http", 8080, OSError("in use"))})
        sequencer = make_sequencer(env)

        with pytest.raises(StartupError) as exc_info:
            await sequencer.run()

        assert exc_info.value.step == "bind plain listener"
        assert env.events == BASE_STEPS[:-1] + ["destroy manager", "close persistence"]

    async def test_https_bind_failure_rolls_back(self):
        env = FakeEnvironment(tls=BUNDLE, fail={"bind https": ListenerBindError("https", 8443)})
        sequencer = make_sequencer(env)

        with pytest.raises(StartupError) as exc_info:
            await sequencer.run()

        assert exc_info.value.step == "bind encrypted listener"
        assert env.events == BASE_STEPS + ["close http", "destroy manager", "close persistence"]
        assert sequencer.runtime.activation is None
        env.manager.init.assert_not_awaited()

    async def test_missing_tls_is_not_fatal(self):
        env = FakeEnvironment(tls=None)
        runtime = await make_sequencer(env).run()
        assert runtime.http_listener.is_started

    async def test_unreadable_tls_disables_https_only(self, caplog):
        error = TLSMaterialError("/etc/tls/cert.pem", PermissionError("denied"))
        env = FakeEnvironment(fail={"load tls": error})
        sequencer = make_sequencer(env)

        with caplog.at_level(logging.ERROR, logger="streamhooks.lifecycle.startup"):
            runtime = await sequencer.run()

        assert env.events == BASE_STEPS
        assert runtime.http_listener.is_started
        assert runtime.https_listener is None
        assert runtime.activation is None
        assert sequencer.phases.phase is LifecyclePhase.ACTIVE
        env.manager.init.assert_not_awaited()
        assert any("/etc/tls/cert.pem" in r.getMessage() for r in caplog.records)

    async def test_manager_construction_failure(self):
        env = FakeEnvironment()
        collaborators = env.collaborators()

        def broken(*args):
            raise ValueError("bad hostname")

        collaborators.build_manager = broken
        sequencer = StartupSequencer(make_settings(), FastAPI(), env.database, collaborators=collaborators)

        with pytest.raises(StartupError) as exc_info:
            await sequencer.run()

        assert exc_info.value.step == "construct subscription manager"
        assert env.events == ["open", "sync", "oauth routes", "close persistence"]
