"""Redis bounded message cache."""

from chatflux.cache.redis_client import RedisMessageCache

__all__ = ["RedisMessageCache"]
