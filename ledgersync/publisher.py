import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List

from aiokafka import AIOKafkaProducer

from ledgersync.schemas import SourceMessage, TransactionMessage, TransactionsMessage
from ledgersync.settings import settings

logger = logging.getLogger(__name__)


def transport_key(source: SourceMessage) -> str:
    return "|".join([source.connection_name, source.name, source.type, source.sub_type, source.currency])


class Publisher:
    """Emits one message per source; the key pins a source to one partition."""

    def __init__(self, producer, topic: str = None):
        self.producer = producer
        self.topic = topic or settings.KAFKA_TRANSACTIONS_TOPIC

    async def publish(self, source: SourceMessage, transactions: List[TransactionMessage]) -> bool:
        key = transport_key(source)
        if not transactions and source.balance is None:
            logger.debug("Nothing to publish", extra={"source": key, "operation": "publish"})
            return False

        message = TransactionsMessage(source=source, transactions=transactions)
        await self.producer.send_and_wait(
            self.topic,
            value=message.model_dump_json(exclude_none=True).encode("utf-8"),
            key=key.encode("utf-8"),
        )
        logger.info(
            f"Published {len(transactions)} transaction(s)",
            extra={"source": key, "operation": "publish", "topic": self.topic},
        )
        return True


@asynccontextmanager
async def kafka_producer(bootstrap: str = None, max_retries: int = 12, delay: int = 5):
    bootstrap = bootstrap or settings.KAFKA_BOOTSTRAP
    producer = AIOKafkaProducer(bootstrap_servers=bootstrap, acks="all")
    for attempt in range(max_retries):
        try:
            await producer.start()
            logger.info(f"Producer started bootstrap={bootstrap}")
            break
        except Exception as e:
            logger.warning(f"Kafka not available yet (attempt {attempt + 1}/{max_retries}): {e}")
            await asyncio.sleep(delay)
    else:
        raise RuntimeError(f"Could not connect to Kafka after {max_retries} attempts.")
    try:
        yield producer
    finally:
        await producer.stop()
        logger.info("Producer stopped")
