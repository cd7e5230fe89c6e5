import os
import sys
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from slotfinder.adaptors.memory import MemoryAdaptor
from slotfinder.app import create_app
from slotfinder.config import CleanupSettings, RateLimitSettings, Settings
from slotfinder.tests.factories import FakeClock
from slotfinder.state import SharedState


@pytest.fixture
def settings():
    with patch.dict(os.environ, {}, clear=True):
        s = Settings()
    s.rate_limit = RateLimitSettings(enabled=False)
    s.cleanup = CleanupSettings(interval_sec=3600, retention_days=30)
    return s


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def adaptor(clock):
    return MemoryAdaptor(clock=clock)


@pytest.fixture
def shared(adaptor):
    return SharedState(adaptor)


@pytest.fixture
def client(shared, settings):
    with TestClient(create_app(shared, settings)) as c:
        yield c
