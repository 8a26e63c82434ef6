"""
Events and realtime queue runners.

Usage:
    python -m transitnexus.events run
    python -m transitnexus.events realtime
    python -m transitnexus.events test-event
"""

import argparse
import logging
import os
import signal
import sys
import time
from datetime import timedelta

from transitnexus.canonical.entities import ServiceAlert, ServiceAlertType, utc_now
from transitnexus.config.config_main import queue_config
from transitnexus.data.db_broker import ConnectionBroker
from transitnexus.data.queue import QueueBroker
from transitnexus.data.store import EntityStore
from .consumer import EventsBatchConsumer, QueueConsumer, RealtimeBatchConsumer
from .envelope import Event, EventType
from .publisher import EventPublisher

logger = logging.getLogger(__name__)


class GracefulShutdown:
    """
    First interrupt stops new batches and waits for in-flight ones.
    A second interrupt exits immediately.
    """

    def __init__(self, consumers):
        self.consumers = consumers
        self.interrupts = 0

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        self.interrupts += 1
        if self.interrupts == 1:
            logger.info(f"Received signal {signum}, waiting for in-flight batches")
            for consumer in self.consumers:
                consumer.stop_consuming()
        else:
            logger.warning(f"Received signal {signum} again, exiting immediately")
            os._exit(1)

    def run(self):
        for consumer in self.consumers:
            consumer.start()
        # Join in short slices so signals are handled promptly
        while any(consumer.running for consumer in self.consumers):
            for consumer in self.consumers:
                consumer.wait(0.5)
        logger.info("All consumers stopped")


def run_events(broker: ConnectionBroker):
    queue = QueueBroker(broker)
    consumer = QueueConsumer(
        queue,
        queue_config.events_queue,
        EventsBatchConsumer(EntityStore(broker)),
        number_consumers=queue_config.number_consumers,
        batch_size=queue_config.batch_size,
        poll_timeout=queue_config.poll_timeout,
        redelivery_after=timedelta(seconds=queue_config.redelivery_after_seconds),
    )
    GracefulShutdown([consumer]).run()


def run_realtime(broker: ConnectionBroker):
    queue = QueueBroker(broker)
    consumer = QueueConsumer(
        queue,
        queue_config.realtime_queue,
        RealtimeBatchConsumer(EntityStore(broker)),
        number_consumers=queue_config.number_consumers,
        batch_size=queue_config.batch_size,
        poll_timeout=queue_config.poll_timeout,
        redelivery_after=timedelta(seconds=queue_config.redelivery_after_seconds),
    )
    GracefulShutdown([consumer]).run()


def publish_test_event(broker: ConnectionBroker):
    alert = ServiceAlert(
        primary_identifier="GB:SERVICEALERT:TEST",
        alert_type=ServiceAlertType.SERVICE_SUSPENDED,
        title="Line Suspended",
        text="Northern Line has been suspended due to a fault on the line",
        matched_identifiers=["gb-noc-TFLO:1-NTN-_-y05-590847:1-NTN-_-y05-590847"],
        creation_datetime=utc_now(),
        modification_datetime=utc_now(),
    )
    queue = QueueBroker(broker)
    message_id = EventPublisher(queue).publish(
        Event(type=EventType.SERVICE_ALERT_CREATED, body=alert, timestamp=utc_now())
    )
    print(
        f"Published test event as message {message_id} "
        f"({queue.ready_count(queue_config.events_queue)} waiting on {queue_config.events_queue})"
    )


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description='Transit Nexus event and realtime queue runners',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Consume the events queue
  python -m transitnexus.events run

  # Fold queued realtime journeys and alerts into the store
  python -m transitnexus.events realtime

  # Publish a sample service alert event
  python -m transitnexus.events test-event
        """
    )
    parser.add_argument('command', choices=['run', 'realtime', 'test-event'])
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    broker = ConnectionBroker()
    broker.create_tables()

    start = time.monotonic()
    if args.command == 'run':
        run_events(broker)
    elif args.command == 'realtime':
        run_realtime(broker)
    else:
        publish_test_event(broker)

    logger.info(f"{args.command} finished after {time.monotonic() - start:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
