"""Shared ``redis.asyncio`` client backing the identity principal store."""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis

from ensemble.settings import settings

_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
	"""Return the process-wide client, connecting lazily on first use."""
	global _client
	if _client is None:
		_client = redis.from_url(settings.redis_url, decode_responses=True)
	return _client


def set_redis_client(client: Optional[redis.Redis]) -> None:
	"""Swap the client (tests install fakeredis); ``None`` reconnects lazily."""
	global _client
	_client = client
