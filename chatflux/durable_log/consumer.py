"""Kafka durable log reader.

Consumer-group reader with manual commits. Positions are committed per
partition for exactly the records handed to ``commit``, so records that
were pulled but not yet flushed are redelivered after a crash.
"""

import asyncio
import logging
from typing import Optional, Sequence

from aiokafka import AIOKafkaConsumer, TopicPartition
from aiokafka.errors import KafkaError

from chatflux.adapters.base import LogRecord
from chatflux.errors.exceptions import FatalStartupError, TransientAdapterError, ValidationError
from chatflux.events.model import Event

logger = logging.getLogger(__name__)

ADAPTER_NAME = "log"

IO_ERRORS = (KafkaError, OSError, asyncio.TimeoutError)


class KafkaLogReader:
    """Pull-based batch reader over the chat topic."""

    def __init__(
        self,
        topic: str,
        group_id: str,
        consumer: Optional[AIOKafkaConsumer] = None,
        bootstrap_servers: str = "localhost:9092",
        client_id: str = "chatflux",
    ):
        self.topic = topic
        self.group_id = group_id
        self._consumer = consumer or AIOKafkaConsumer(
            topic,
            bootstrap_servers=bootstrap_servers,
            client_id=client_id,
            group_id=group_id,
            enable_auto_commit=False,
            auto_offset_reset="latest",
            session_timeout_ms=30000,
            heartbeat_interval_ms=3000,
        )
        self._started = False

    async def start(self) -> None:
        """Join the consumer group; raises FatalStartupError on failure."""
        if self._started:
            return
        logger.info("Connecting Kafka consumer...")
        try:
            await self._consumer.start()
        except IO_ERRORS as e:
            logger.error("Failed to connect Kafka consumer: %s", e)
            raise FatalStartupError("kafka consumer", e) from e
        self._started = True
        logger.info("Kafka consumer connected", extra={"extra_data": {"group": self.group_id}})

    async def pull(self, max_records: int, timeout_ms: int) -> list[LogRecord]:
        """Fetch up to ``max_records`` records, waiting at most ``timeout_ms``.

        Records that do not decode into a valid event are logged and
        skipped; their offsets are covered by the next commit on the
        same partition.
        """
        try:
            batches = await self._consumer.getmany(timeout_ms=timeout_ms, max_records=max_records)
        except IO_ERRORS as e:
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

        records: list[LogRecord] = []
        for tp, messages in batches.items():
            for message in messages:
                try:
                    event = Event.from_json(message.value)
                except ValidationError as e:
                    logger.error(
                        "Error processing Kafka message: %s", e,
                        extra={"partition": tp.partition, "offset": message.offset},
                    )
                    continue
                records.append(LogRecord(
                    event=event,
                    partition=tp.partition,
                    offset=message.offset,
                    topic=tp.topic,
                ))
        return records

    async def commit(self, records: Sequence[LogRecord]) -> None:
        """Commit the position after the highest offset of each partition in ``records``."""
        if not records:
            return
        offsets: dict[TopicPartition, int] = {}
        for record in records:
            tp = TopicPartition(record.topic or self.topic, record.partition)
            offsets[tp] = max(offsets.get(tp, 0), record.offset + 1)
        try:
            await self._consumer.commit(offsets)
        except IO_ERRORS as e:
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

    async def close(self) -> None:
        """Leave the consumer group and disconnect."""
        if not self._started:
            return
        self._started = False
        await self._consumer.stop()
        logger.info("Kafka consumer disconnected")
