# Ensure tests import the gateway package from this directory first, even when
# it has not been installed into the environment.
import os
import sys

import pytest
from fastapi.testclient import TestClient

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from cors_gateway.config import ProxyConfig  # noqa: E402
from cors_gateway.server import create_app  # noqa: E402
from cors_gateway.utils_tests.upstream_mock import (  # noqa: E402
    TEST_HELP_TEXT,
    FakeUpstream,
)


@pytest.fixture
def upstream():
    """Fake target sites; every outbound hop of the gateway lands here."""
    return FakeUpstream()


@pytest.fixture
def make_config():
    def _make_config(**overrides):
        overrides.setdefault("help_text", TEST_HELP_TEXT)
        return ProxyConfig(**overrides)

    return _make_config


@pytest.fixture
def gateway(upstream, make_config):
    """Build a TestClient for a gateway wired to the fake upstream.

    Redirects are never followed by the test client so that the gateway's own
    redirect responses can be inspected.
    """

    def _gateway(config=None, **overrides):
        app = create_app(config or make_config(**overrides), upstream.client_factory)
        return TestClient(app, follow_redirects=False)

    return _gateway
