"""Kafka durable append log: producer, group reader and topic provisioning."""

from chatflux.durable_log.admin import ensure_topic
from chatflux.durable_log.consumer import KafkaLogReader
from chatflux.durable_log.producer import KafkaEventProducer, partition_key

__all__ = [
    "ensure_topic",
    "KafkaLogReader",
    "KafkaEventProducer",
    "partition_key",
]
