"""
Pytest configuration and fixtures for testing.

Provides settings, TLS material and the fake startup collaborators.
"""

import os
from pathlib import Path
from typing import Dict

import pytest

from streamhooks.core.config import Settings
from streamhooks.core.database import Database
from tests.fakes import FakeEnvironment, make_settings

TLS_FIXTURES = Path(__file__).parent / "fixtures" / "tls"


def pytest_configure(config):
    """
    Pytest hook that runs before test collection.

    Plain text logs for readable failures; ``.env.test`` is loaded when
    present.
    """
    from dotenv import load_dotenv

    os.environ.setdefault("TESTING", "true")
    test_env_path = Path(__file__).parent.parent / ".env.test"
    if test_env_path.exists():
        load_dotenv(test_env_path, override=True)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def tls_paths() -> Dict[str, str]:
    """Paths of a valid key/certificate/chain for ``localhost``."""
    return {
        "CERT_KEY_PATH": str(TLS_FIXTURES / "privkey.pem"),
        "CERT_PATH": str(TLS_FIXTURES / "cert.pem"),
        "CERT_CHAIN_PATH": str(TLS_FIXTURES / "chain.pem"),
    }


@pytest.fixture
def fake_env() -> FakeEnvironment:
    return FakeEnvironment()


@pytest.fixture
async def database(tmp_path):
    """Opened and synchronized SQLite database in a temporary directory."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.sqlite'}")
    await db.open()
    await db.sync()
    yield db
    await db.close()
