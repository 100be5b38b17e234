"""Redis Pub/Sub broadcast adapter."""

from chatflux.broadcast.pubsub import RedisBroadcaster

__all__ = ["RedisBroadcaster"]
