import asyncio
import logging
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError

from . import outbox
from .config import settings

logger = logging.getLogger("outbox_poller")


async def connect_producer(max_retries: int = 5, retry_delay: int = 5) -> AIOKafkaProducer | None:
    """
    Starts a Kafka producer, retrying the initial connection.
    Returns None when Kafka stays unreachable.
    """
    retries = 0
    while retries < max_retries:
        producer = AIOKafkaProducer(bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS)
        try:
            await producer.start()
            logger.info(f"Outbox poller connected to Kafka on attempt {retries + 1}.")
            return producer
        except KafkaConnectionError as e:
            retries += 1
            logger.warning(
                f"Kafka connection attempt {retries}/{max_retries} failed: {e}. Retrying in {retry_delay} seconds...")
            await producer.stop()
            if retries < max_retries:
                await asyncio.sleep(retry_delay)
    logger.error("Outbox poller failed to connect to Kafka after multiple retries.")
    return None


async def relay_pending_events(store, producer, topic: str | None = None, limit: int = 100) -> int:
    """
    Publishes one batch of pending change events. Sent events are deleted;
    events that fail to send stay PENDING for the next poll.
    """
    topic = topic or settings.KAFKA_BOOKING_TOPIC
    pending = await outbox.pending_events(store, [topic], limit=limit)
    if not pending:
        return 0

    logger.info(f"Found {len(pending)} pending events in outbox.")
    processed = 0
    for event in pending:
        try:
            await producer.send_and_wait(topic=event["topic"], value=event["payload"].encode("utf-8"))
        except Exception as e:
            logger.error(f"Failed to send event {event['id']} to Kafka: {e}")
            continue  # Don't delete, will be retried next loop
        await outbox.remove(store, event["id"])
        processed += 1

    if processed > 0:
        logger.info(f"Successfully processed {processed} events.")
    return processed


async def run_outbox_poller(store, poll_interval: int | None = None, retry_delay: int = 5, max_retries: int = 5):
    """
    Continuously relays booking change events from the outbox to Kafka.
    """
    logger.info("Starting outbox poller...")
    poll_interval = poll_interval or settings.OUTBOX_POLL_INTERVAL_SECONDS

    producer = await connect_producer(max_retries=max_retries, retry_delay=retry_delay)
    # Exit the poller task if the connection failed permanently
    if producer is None:
        return

    # --- Main polling loop (starts only if connection succeeded) ---
    try:
        while True:
            try:
                await relay_pending_events(store, producer)
            except Exception as e:
                logger.error(f"Error in poller loop: {e}")

            await asyncio.sleep(poll_interval)

    except asyncio.CancelledError:
        logger.info("Outbox poller task cancelled.")
    finally:
        logger.info("Stopping Kafka producer...")
        await producer.stop()
        logger.info("Outbox poller shut down.")
