"""Kafka durable log producer.

Appends events to the chat topic with ``acks="all"`` so a successful
enqueue means every in-sync replica has the event. Messages are keyed
by origin so one origin's events share a partition and keep their order.
"""

import asyncio
import logging
import uuid
from typing import Optional

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from chatflux.adapters.base import LogAck
from chatflux.errors.exceptions import FatalStartupError, TransientAdapterError
from chatflux.events.config import SYSTEM_KEY
from chatflux.events.model import Event

logger = logging.getLogger(__name__)

ADAPTER_NAME = "log"

IO_ERRORS = (KafkaError, OSError, asyncio.TimeoutError)


def partition_key(event: Event) -> bytes:
    """Partition key for an event: its origin, or the system sentinel."""
    return (event.origin_id or SYSTEM_KEY).encode("utf-8")


class KafkaEventProducer:
    """Producer side of the durable log."""

    def __init__(
        self,
        topic: str,
        producer: Optional[AIOKafkaProducer] = None,
        bootstrap_servers: str = "localhost:9092",
        client_id: str = "chatflux",
        request_timeout_ms: int = 30000,
    ):
        self.topic = topic
        self._producer = producer or AIOKafkaProducer(
            bootstrap_servers=bootstrap_servers,
            client_id=client_id,
            acks="all",
            enable_idempotence=True,
            request_timeout_ms=request_timeout_ms,
        )
        self._started = False

    async def start(self) -> None:
        """Connect to the brokers; raises FatalStartupError on failure."""
        if self._started:
            return
        logger.info("Connecting Kafka producer...")
        try:
            await self._producer.start()
        except IO_ERRORS as e:
            logger.error("Failed to connect Kafka producer: %s", e)
            raise FatalStartupError("kafka producer", e) from e
        self._started = True
        logger.info("Kafka producer connected")

    async def enqueue(self, event: Event) -> LogAck:
        """Append one event and wait for the broker acknowledgment."""
        headers = [
            ("message-id", uuid.uuid4().hex.encode("utf-8")),
            ("timestamp", str(event.created_at_ms).encode("utf-8")),
        ]
        try:
            metadata = await self._producer.send_and_wait(
                self.topic,
                value=event.to_json(),
                key=partition_key(event),
                headers=headers,
            )
        except IO_ERRORS as e:
            logger.error("Error sending message to Kafka: %s", e)
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

        logger.debug(
            "Message sent to Kafka",
            extra={"partition": metadata.partition, "offset": metadata.offset},
        )
        return LogAck(topic=metadata.topic, partition=metadata.partition, offset=metadata.offset)

    async def close(self) -> None:
        """Flush pending sends and disconnect."""
        if not self._started:
            return
        self._started = False
        await self._producer.stop()
        logger.info("Kafka producer disconnected")
