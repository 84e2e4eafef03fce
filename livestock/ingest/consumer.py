"""Kafka price feed consumer.

Consumes quote updates from the ``stocks`` topic, upserts each one into the
record store and appends throttled samples to the price history.  Offsets
are committed manually once a message is finished, which gives at-least-once
delivery; the idempotent upsert makes redelivered messages harmless.

Run with ``livestock-consumer`` or ``python -m livestock.ingest.consumer``.
Configuration is read from the environment, see :mod:`livestock.config`.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition
from dotenv import load_dotenv
from prometheus_client import Counter, start_http_server

from ..common.logging_utils import configure_logging
from ..config import Settings, StorageFailurePolicy
from ..errors import MalformedMessageError, RecordRejectedError, StorageError
from ..schemas import decode_price_message
from ..storage.base import HistoryStore, RecordStore
from .history import HistoryThrottle

logger = logging.getLogger(__name__)

feed_messages_total = Counter(
    "livestock_feed_messages_total",
    "Feed messages consumed, by outcome",
    ["outcome"],
)
history_writes_total = Counter(
    "livestock_history_writes_total",
    "History samples written, by result",
    ["result"],
)
redeliveries_total = Counter(
    "livestock_feed_redeliveries_total",
    "Messages rewound for redelivery after a storage failure",
)
offset_errors_total = Counter(
    "livestock_feed_offset_errors_total",
    "Failed offset commits and seeks, by operation",
    ["operation"],
)


class Outcome(str, Enum):
    STORED = "stored"
    MALFORMED = "malformed"
    REJECTED = "rejected"
    STORAGE_FAILED = "storage_failed"


@dataclass(frozen=True)
class MessageResult:
    """Result of handling one feed message."""

    outcome: Outcome
    symbol: Optional[str] = None
    error: Optional[str] = None


class PriceIngestor:
    """Decode a feed message and write it to the stores.

    ``handle`` never raises for bad payloads or storage failures; it returns
    a :class:`MessageResult` and leaves the commit decision to the caller.
    """

    def __init__(
        self,
        store: RecordStore,
        history: Optional[HistoryStore] = None,
        throttle: Optional[HistoryThrottle] = None,
    ) -> None:
        self.store = store
        self.history = history
        self.throttle = throttle or HistoryThrottle()

    def handle(self, raw) -> MessageResult:
        try:
            record = decode_price_message(raw)
        except MalformedMessageError as exc:
            logger.warning("dropping malformed message: %s", exc)
            feed_messages_total.labels(Outcome.MALFORMED.value).inc()
            return MessageResult(Outcome.MALFORMED, error=str(exc))

        try:
            self.store.upsert(record)
        except RecordRejectedError as exc:
            logger.error("store rejected %s, dropping it: %s", record.symbol, exc)
            feed_messages_total.labels(Outcome.REJECTED.value).inc()
            return MessageResult(Outcome.REJECTED, symbol=record.symbol, error=str(exc))
        except StorageError as exc:
            logger.error("upsert failed for %s: %s", record.symbol, exc)
            feed_messages_total.labels(Outcome.STORAGE_FAILED.value).inc()
            return MessageResult(Outcome.STORAGE_FAILED, symbol=record.symbol, error=str(exc))

        logger.info("%s price updated to %s", record.symbol, record.price)
        feed_messages_total.labels(Outcome.STORED.value).inc()
        self._record_history(record)
        return MessageResult(Outcome.STORED, symbol=record.symbol)

    def _record_history(self, record) -> None:
        if self.history is None:
            return
        if not self.throttle.should_record(record.symbol, record.price):
            return
        try:
            self.history.append_history(record)
        except StorageError as exc:
            logger.error("history insert failed for %s: %s", record.symbol, exc)
            history_writes_total.labels("failed").inc()
            return
        self.throttle.mark_recorded(record.symbol, record.price)
        history_writes_total.labels("written").inc()
        logger.debug("%s price inserted to history", record.symbol)


class PriceFeedConsumer:
    """Drive a :class:`PriceIngestor` from a confluent-kafka consumer.

    Parameters
    ----------
    consumer:
        A ``confluent_kafka.Consumer`` created with auto-commit disabled.
    ingestor:
        Handler applied to every message value.
    topic:
        Topic to subscribe to in :meth:`run`.
    policy:
        ``REDELIVER`` rewinds to a message whose upsert failed so it is
        consumed again; ``DROP`` commits it and moves on.  Records the store
        rejects outright are committed under either policy.
    retry_backoff:
        Seconds to wait before a rewound message is polled again.
    """

    def __init__(
        self,
        consumer,
        ingestor: PriceIngestor,
        topic: str,
        *,
        policy: StorageFailurePolicy = StorageFailurePolicy.REDELIVER,
        retry_backoff: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.consumer = consumer
        self.ingestor = ingestor
        self.topic = topic
        self.policy = policy
        self.retry_backoff = retry_backoff
        self._sleep = sleep

    def process(self, msg) -> Optional[MessageResult]:
        """Handle one polled message and commit or rewind its offset."""

        err = msg.error()
        if err:
            if err.code() != KafkaError._PARTITION_EOF:
                logger.error("kafka error: %s", err)
            return None

        result = self.ingestor.handle(msg.value())
        if result.outcome is Outcome.STORAGE_FAILED:
            if self.policy is StorageFailurePolicy.REDELIVER:
                logger.warning(
                    "rewinding %s[%s]@%s for redelivery",
                    msg.topic(),
                    msg.partition(),
                    msg.offset(),
                )
                try:
                    self.consumer.seek(
                        TopicPartition(msg.topic(), msg.partition(), msg.offset())
                    )
                except KafkaException as exc:
                    # partition revoked; the new owner resumes from the committed offset
                    logger.warning("seek failed, leaving offset uncommitted: %s", exc)
                    offset_errors_total.labels("seek").inc()
                    return result
                redeliveries_total.inc()
                self._sleep(self.retry_backoff)
                return result
            logger.warning("dropping %s after storage failure", result.symbol)

        try:
            self.consumer.commit(message=msg, asynchronous=False)
        except KafkaException as exc:
            # the message may be consumed again, which the idempotent upsert absorbs
            logger.warning(
                "offset commit failed for %s[%s]@%s: %s",
                msg.topic(),
                msg.partition(),
                msg.offset(),
                exc,
            )
            offset_errors_total.labels("commit").inc()
        return result

    def poll_once(self, timeout: float = 1.0) -> Optional[MessageResult]:
        msg = self.consumer.poll(timeout)
        if msg is None:
            return None
        return self.process(msg)

    def run(self, stop: threading.Event, poll_timeout: float = 1.0) -> None:
        """Consume until ``stop`` is set, then close the consumer."""

        self.consumer.subscribe([self.topic])
        logger.info("subscribed to topic %s", self.topic)
        try:
            while not stop.is_set():
                self.poll_once(poll_timeout)
        finally:
            self.consumer.close()
            logger.info("consumer closed")


def create_consumer(settings: Settings) -> Consumer:
    """Create a confluent-kafka consumer for the price feed."""

    return Consumer(
        {
            "bootstrap.servers": settings.kafka_bootstrap_servers,
            "group.id": settings.kafka_group_id,
            "auto.offset.reset": settings.kafka_auto_offset_reset,
            "enable.auto.commit": False,
        }
    )


def build_ingestor(settings: Settings, store) -> PriceIngestor:
    history = store if settings.history_enabled else None
    throttle = HistoryThrottle(
        min_price_delta=settings.history_min_price_delta,
        min_interval=settings.history_min_interval_seconds,
    )
    return PriceIngestor(store, history=history, throttle=throttle)


def main() -> None:  # pragma: no cover - service entry point
    from ..storage.pg import PostgresRecordStore

    load_dotenv()
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    start_http_server(settings.metrics_port)

    store = PostgresRecordStore.from_settings(settings)
    store.ensure_schema()

    feed = PriceFeedConsumer(
        create_consumer(settings),
        build_ingestor(settings, store),
        settings.kafka_topic,
        policy=settings.storage_failure_policy,
        retry_backoff=settings.redelivery_backoff_seconds,
    )

    stop = threading.Event()

    def _handle_shutdown(signum, frame):
        logger.info("received signal %s, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_shutdown)
    signal.signal(signal.SIGTERM, _handle_shutdown)

    try:
        feed.run(stop)
    finally:
        store.close()


if __name__ == "__main__":  # pragma: no cover - service entry point
    main()
