"""Event Context Management.

Context-local binding of the event being processed (origin, stream)
so that every log line emitted while handling it carries those fields.
"""

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any


_origin_id_var: ContextVar[str] = ContextVar("origin_id", default="")
_stream_id_var: ContextVar[str] = ContextVar("stream_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def get_origin_id() -> str:
    """Get the origin id bound to the current context."""
    return _origin_id_var.get()


def get_stream_id() -> str:
    """Get the stream id bound to the current context."""
    return _stream_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    origin_id = _origin_id_var.get()
    if origin_id:
        ctx["origin_id"] = origin_id
    stream_id = _stream_id_var.get()
    if stream_id:
        ctx["stream_id"] = stream_id
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class EventContext:
    """Context manager binding an event's origin and stream to log entries.

    Example:
        with EventContext(origin_id="sock-1", stream_id="global"):
            logger.info("fan-out complete")  # includes origin_id, stream_id
    """

    origin_id: str = ""
    stream_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    _tokens: list = field(default_factory=list, repr=False)

    def __enter__(self) -> "EventContext":
        self._tokens = [
            (_origin_id_var, _origin_id_var.set(self.origin_id)),
            (_stream_id_var, _stream_id_var.set(self.stream_id)),
            (_extra_context_var, _extra_context_var.set(self.extra.copy())),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)
