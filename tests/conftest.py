"""
Pytest configuration for crowd-energy tests.

Fixtures build an engine over in-memory collaborators with a controllable
clock, and a TestClient bound to that engine.
"""

from datetime import timedelta

import pytest

from crowdenergy.common.config import EngineConfig
from crowdenergy.core.engine import create_engine, set_engine
from crowdenergy.storage import create_in_memory_gateway
from tests.helpers import EVENT_START, FixedClock


@pytest.fixture
def clock():
    return FixedClock(EVENT_START + timedelta(minutes=5))


@pytest.fixture
def config():
    # TTL of zero keeps reads current within a test
    return EngineConfig(cache_ttl_seconds=0.0)


@pytest.fixture
def gateway():
    return create_in_memory_gateway(timeout=2.0)


@pytest.fixture
def engine(config, gateway, clock):
    eng = create_engine(config=config, gateway=gateway, clock=clock)
    eng.register_event("evt-1", EVENT_START, EVENT_START + timedelta(minutes=10))
    return eng


@pytest.fixture
def client(engine):
    from fastapi.testclient import TestClient
    from crowdenergy.main import app

    set_engine(engine)
    try:
        yield TestClient(app)
    finally:
        set_engine(None)
