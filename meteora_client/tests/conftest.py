import pytest

from meteora_client.config import FeedSettings
from meteora_client.pools import PoolManager

from .fixtures import FakeChain


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def settings():
    return FeedSettings()


@pytest.fixture
def manager(chain, settings):
    return PoolManager(chain, settings)
