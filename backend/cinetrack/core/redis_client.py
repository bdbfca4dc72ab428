from redis import asyncio as aioredis
from redis.asyncio.connection import ConnectionPool as AsyncConnectionPool
from ..core.config import settings
import asyncio
import threading
import weakref
from typing import Callable, Dict, NamedTuple, Optional


class _LoopClient(NamedTuple):
	loop: Optional[weakref.ref]
	client: aioredis.Redis
	pool: Optional[AsyncConnectionPool]


# One client per event loop (or per thread outside a loop). A redis.asyncio
# connection must not be awaited from a loop other than the one it was made in.
_clients: Dict[str, _LoopClient] = {}

# Replaces the pooled client when set (tests, offline scripts)
_client_factory: Optional[Callable[[], aioredis.Redis]] = None


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
	try:
		return asyncio.get_running_loop()
	except RuntimeError:
		return None


def _context_key(loop: Optional[asyncio.AbstractEventLoop]) -> str:
	if loop is None:
		return f"thread-{threading.get_ident()}"
	return f"loop-{id(loop)}"


def _build_client() -> tuple:
	if _client_factory is not None:
		return _client_factory(), None
	pool = AsyncConnectionPool.from_url(
		settings.redis_url,
		decode_responses=True,
		max_connections=50,
		socket_connect_timeout=2,
		socket_timeout=2,
		retry_on_timeout=True,
	)
	return aioredis.Redis(connection_pool=pool), pool


def get_redis() -> aioredis.Redis:
	"""Return the Redis client owned by the calling event loop."""
	loop = _running_loop()
	key = _context_key(loop)
	entry = _clients.get(key)
	# ids of closed loops get reused, so compare the loop object itself
	if entry is not None and (entry.loop is None or entry.loop() is loop):
		return entry.client

	client, pool = _build_client()
	_clients[key] = _LoopClient(weakref.ref(loop) if loop is not None else None, client, pool)
	return client


def set_client_factory(factory: Optional[Callable[[], aioredis.Redis]]) -> None:
	"""Route get_redis() through ``factory`` and drop cached clients."""
	global _client_factory
	_client_factory = factory
	_clients.clear()
