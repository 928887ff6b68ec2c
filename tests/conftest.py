import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from playsync.infra.cache import FetchCache, MemoryCacheBackend
from playsync.infra.memory import InMemoryRemoteStore
from playsync.infra.push import InMemoryPushHub
from playsync.session import SyncSession
from playsync.settings import settings


class FakeClock:
	"""Manually advanced wall clock for TTL checks."""

	def __init__(self, start: float = 1_700_000_000.0) -> None:
		self.now = start

	def __call__(self) -> float:
		return self.now

	def advance(self, seconds: float) -> None:
		self.now += seconds


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from playsync.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Keep tests on the in-process backends regardless of the local `.env`."""
	original = (
		settings.environment,
		settings.cache_backend,
		settings.relationship_cache_ttl_seconds,
		settings.remote_base_url,
		settings.push_url,
	)
	settings.environment = "test"
	settings.cache_backend = "memory"
	settings.relationship_cache_ttl_seconds = 60.0
	settings.remote_base_url = None
	settings.push_url = None
	try:
		yield
	finally:
		(
			settings.environment,
			settings.cache_backend,
			settings.relationship_cache_ttl_seconds,
			settings.remote_base_url,
			settings.push_url,
		) = original


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def cache(clock):
	return FetchCache(MemoryCacheBackend(max_entries=64), ttl_seconds=60.0, clock=clock)


@pytest.fixture
def hub():
	return InMemoryPushHub()


@pytest.fixture
def store(hub):
	remote = InMemoryRemoteStore(hub)
	for user_id, name in (("alice", "Alice"), ("bob", "Bob"), ("carol", "Carol")):
		remote.add_user(user_id, name)
	return remote


@pytest_asyncio.fixture
async def make_session(store, hub):
	"""Factory for sessions that share one store, each with its own push client."""
	sessions = []

	async def _make(user_id: str | None = None) -> SyncSession:
		session = SyncSession(store, hub.channel())
		sessions.append(session)
		if user_id is not None:
			await session.start(user_id)
		return session

	try:
		yield _make
	finally:
		for session in sessions:
			await session.close()
