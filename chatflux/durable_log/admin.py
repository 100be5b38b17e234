"""Kafka topic provisioning."""

import logging

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import KafkaError, TopicAlreadyExistsError

from chatflux.errors.exceptions import FatalStartupError

logger = logging.getLogger(__name__)

TOPIC_CONFIGS = {
    "retention.ms": str(7 * 24 * 60 * 60 * 1000),
    "compression.type": "snappy",
}


async def ensure_topic(
    bootstrap_servers: str,
    topic: str,
    partitions: int = 3,
    replication_factor: int = 1,
    client_id: str = "chatflux",
) -> bool:
    """Create the chat topic if it does not exist.

    Returns True when the topic was created, False when it already existed.
    An existing topic is never reconfigured.
    """
    admin = AIOKafkaAdminClient(bootstrap_servers=bootstrap_servers, client_id=f"{client_id}-admin")
    try:
        await admin.start()
        existing = await admin.list_topics()
        if topic in existing:
            logger.info('Topic "%s" already exists', topic)
            return False

        logger.info("Creating topic: %s", topic)
        try:
            await admin.create_topics([
                NewTopic(
                    name=topic,
                    num_partitions=partitions,
                    replication_factor=replication_factor,
                    topic_configs=TOPIC_CONFIGS,
                )
            ])
        except TopicAlreadyExistsError:
            logger.info('Topic "%s" created concurrently', topic)
            return False
        logger.info('Topic "%s" created', topic)
        return True
    except KafkaError as e:
        logger.error("Kafka admin error: %s", e)
        raise FatalStartupError("kafka admin", e) from e
    finally:
        await admin.close()
