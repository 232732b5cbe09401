import pytest

from confluence_engine.data.signal_store import InMemorySignalStore
from confluence_engine.tests.fixtures.engine import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemorySignalStore()
