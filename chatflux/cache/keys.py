"""Redis key naming conventions for ChatFlux.

All keys are namespaced with the 'chatflux:' prefix.
"""

# Recent messages per stream (capped list, oldest at the head)
MESSAGES = "chatflux:messages:{stream_id}"


def messages_key(stream_id: str) -> str:
    return MESSAGES.format(stream_id=stream_id)
