"""Test configuration and fixtures."""

import io

import pytest

from dockcli.command import CommandContext
from dockcli.config import ClientSettings
from dockcli.core.types import AuthConfig
from dockcli.credentials import INDEX_SERVER, ConfigFile
from dockcli.prompt import Prompter
from tests.helpers import FakeEngine, FakeTrustRepository


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and the home directory."""
    return ClientSettings(
        config_dir=tmp_path / "config",
        host="tcp://127.0.0.1:2375",
        api_version="1.47",
        context="",
        content_trust=False,
        content_trust_server="",
    )


@pytest.fixture
def config_file():
    return ConfigFile(
        auths={INDEX_SERVER: AuthConfig(username="user", password="pass", server_address=INDEX_SERVER)}
    )


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def fake_trust():
    return FakeTrustRepository()


@pytest.fixture
def make_context(settings, config_file, fake_engine, fake_trust):
    """Build a CommandContext wired to the fakes, with scripted interactive input."""

    def make(stdin: str = "", **overrides):
        out = io.StringIO()
        kwargs = dict(
            settings=settings,
            config=config_file,
            out=out,
            err=io.StringIO(),
            prompter=Prompter(io.StringIO(stdin), out),
            creds_store="",
            client_factory=lambda: fake_engine,
            repository_factory=fake_trust.factory,
        )
        kwargs.update(overrides)
        return CommandContext(**kwargs)

    return make


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line("markers", "integration: mark test as integration test requiring an engine")
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")
