"""Message distribution pipeline: fan-out, batching consumer and reads."""

from chatflux.pipeline.consumer import BatchingConsumer, ConsumerState, ConsumerStats
from chatflux.pipeline.fanout import (
    Disposition,
    FanoutCoordinator,
    SinkResult,
    SinkStatus,
)
from chatflux.pipeline.reader import ReadCoordinator, ReadResult

__all__ = [
    "BatchingConsumer",
    "ConsumerState",
    "ConsumerStats",
    "Disposition",
    "FanoutCoordinator",
    "SinkResult",
    "SinkStatus",
    "ReadCoordinator",
    "ReadResult",
]
