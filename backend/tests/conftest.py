import sys
import pytest
from pathlib import Path

# Add backend root (1 level up from tests/) to sys.path so tests can import 'smartcare'
root = Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

# Tests import helpers.py as a sibling module
tests_dir = Path(__file__).resolve().parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

import fakeredis

from smartcare.services.store import RedisDocumentStore


@pytest.fixture
async def redis_client():
    """Isolated in-memory Redis per test."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def store(redis_client):
    return RedisDocumentStore(client=redis_client, poll_timeout=0.05)
