"""
Ledger-side consumer.

Reads `{source, transactions[]}` messages from Kafka one at a time, makes sure
the ledger has an asset for the source, and inserts each transaction. Offsets
are committed only after a message was fully processed, so a failure leaves
the message to be redelivered. A message that keeps failing is moved to the
dead-letter topic after CONSUMER_MAX_ATTEMPTS tries.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import tzinfo
from typing import Dict, Optional, Tuple

from aiokafka import AIOKafkaConsumer, TopicPartition

from ledgersync.assets import AssetCache, AssetReconciler
from ledgersync.ledger_client import LedgerClient
from ledgersync.logging_config import configure_logging
from ledgersync.publisher import kafka_producer, transport_key
from ledgersync.schemas import TransactionsMessage
from ledgersync.settings import settings
from ledgersync.transform import Inserter, PendingCategory, ledger_timezone, transform

logger = logging.getLogger(__name__)


class TransactionsHandler:
    def __init__(
        self,
        reconciler: AssetReconciler,
        pending_category: PendingCategory,
        inserter: Inserter,
        zone: Optional[tzinfo] = None,
    ):
        self.reconciler = reconciler
        self.pending_category = pending_category
        self.inserter = inserter
        self.zone = zone or ledger_timezone()

    async def startup(self) -> None:
        await self.reconciler.load()
        await self.pending_category.resolve()

    async def handle(self, raw: bytes) -> int:
        if self.pending_category.id is None:
            raise RuntimeError("Pending category not resolved; call startup() first")

        source_key = None
        try:
            message = TransactionsMessage.model_validate_json(raw)
            source_key = transport_key(message.source)
            asset_id = await self.reconciler.reconcile(message.source)
            for transaction in message.transactions:
                await self.inserter.insert(
                    transform(transaction, asset_id, self.pending_category.id, self.zone),
                    pending=transaction.status == "pending",
                    source_key=source_key,
                )
        except Exception:
            logger.exception("Failed to process transactions message", extra={"source": source_key, "operation": "handle"})
            raise

        logger.info(
            f"Processed {len(message.transactions)} transaction(s) into asset {asset_id}",
            extra={"source": source_key, "operation": "handle"},
        )
        return len(message.transactions)


async def consume(
    consumer,
    handler: TransactionsHandler,
    dead_letter=None,
    dead_letter_topic: str = None,
    max_attempts: int = None,
    retry_delay: float = 1.0,
) -> None:
    """Receive loop with commit-after-success.

    `consumer` is an AIOKafkaConsumer (or anything with the same iteration,
    commit and seek methods); `dead_letter` a started producer.
    """
    max_attempts = max_attempts or settings.CONSUMER_MAX_ATTEMPTS
    dead_letter_topic = dead_letter_topic or settings.KAFKA_DEAD_LETTER_TOPIC
    attempts: Dict[Tuple[TopicPartition, int], int] = {}

    async for msg in consumer:
        tp = TopicPartition(msg.topic, msg.partition)
        position = (tp, msg.offset)
        extra = {"topic": msg.topic, "partition": msg.partition, "offset": msg.offset}
        try:
            await handler.handle(msg.value)
        except Exception as e:
            failures = attempts.get(position, 0) + 1
            if failures < max_attempts:
                attempts[position] = failures
                logger.warning(
                    f"Message failed (attempt {failures}/{max_attempts}), will redeliver: {e!r}", extra=extra
                )
                consumer.seek(tp, msg.offset)
                await asyncio.sleep(retry_delay * failures)
                continue
            attempts.pop(position, None)
            if dead_letter is None:
                logger.error(f"Message failed too many times and no dead-letter topic is configured: {e!r}", extra=extra)
                raise
            await dead_letter.send_and_wait(
                dead_letter_topic,
                value=msg.value,
                key=msg.key,
                headers=[("error", repr(e).encode("utf-8"))],
            )
            logger.error(f"Moved message to {dead_letter_topic} after {failures} attempts: {e!r}", extra=extra)
        else:
            attempts.pop(position, None)
        await consumer.commit({tp: msg.offset + 1})


@asynccontextmanager
async def kafka_consumer(bootstrap: str = None, max_retries: int = 12, delay: int = 5):
    bootstrap = bootstrap or settings.KAFKA_BOOTSTRAP
    consumer = AIOKafkaConsumer(
        settings.KAFKA_TRANSACTIONS_TOPIC,
        bootstrap_servers=bootstrap,
        group_id=settings.KAFKA_GROUP_ID,
        enable_auto_commit=False,
        auto_offset_reset="earliest",
    )
    for attempt in range(max_retries):
        try:
            await consumer.start()
            logger.info(
                f"Consumer started bootstrap={bootstrap} topic={settings.KAFKA_TRANSACTIONS_TOPIC} "
                f"group_id={settings.KAFKA_GROUP_ID}"
            )
            break
        except Exception as e:
            logger.warning(f"Kafka not available yet (attempt {attempt + 1}/{max_retries}): {e}")
            await asyncio.sleep(delay)
    else:
        raise RuntimeError(f"Could not connect to Kafka after {max_retries} attempts.")
    try:
        yield consumer
    finally:
        await consumer.stop()
        logger.info("Consumer stopped")


def build_handler(client: LedgerClient = None) -> TransactionsHandler:
    client = client or LedgerClient()
    return TransactionsHandler(
        AssetReconciler(client, AssetCache()),
        PendingCategory(client),
        Inserter(client),
    )


async def run() -> None:
    handler = build_handler()
    await handler.startup()
    async with kafka_producer() as dead_letter, kafka_consumer() as consumer:
        logger.info("Waiting for messages")
        await consume(consumer, handler, dead_letter=dead_letter)


def main():
    configure_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
