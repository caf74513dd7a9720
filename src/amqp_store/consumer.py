"""
Background consumption for ``Store.subscribe``.

All subscriptions of a store share one consume channel. A single
``DeliveryDispatcher`` thread drains that channel and hands every delivery to
the ``DeliveryStream`` of the consumer it was addressed to. Each subscription
then runs its own consume-loop thread reading its stream and calling the
user handler, so a slow handler only delays its own deliveries.
"""

import logging
import queue
import threading
import time
from typing import Callable, Dict, Iterator, Optional

from amqpstorm import AMQPError, Channel, Message

from amqp_store.constants import DISPATCH_IDLE_WAIT

logger = logging.getLogger(__name__)

Handler = Callable[[Message], None]

_CLOSED = object()


class DeliveryStream:
    """
    Ordered stream of deliveries for one consumer, ended by ``close()``.

    AMQPStorm keeps a cancelled consumer's callback registered, so deliveries
    already in flight can still arrive after the stream closed. Those are
    handed back to the broker with a requeueing nack, or dropped when the
    consumer does not acknowledge.
    """

    def __init__(self, auto_ack: bool = False) -> None:
        self._auto_ack = auto_ack
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = threading.Event()
        self._lock = threading.Lock()

    def put(self, message: Message) -> None:
        """Channel callback: append a delivery to the stream."""
        with self._lock:
            if not self._closed.is_set():
                self._queue.put(message)
                return
        self._reject_late(message)

    def _reject_late(self, message: Message) -> None:
        if self._auto_ack:
            logger.warning("Dropping delivery for a closed consumer")
            return
        try:
            message.nack(requeue=True)
        except AMQPError as e:
            logger.warning("Unable to requeue delivery for a closed consumer: %s", e)
            return
        logger.info("Requeued delivery for a closed consumer")

    def close(self) -> None:
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            self._queue.put(_CLOSED)

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> Iterator[Message]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item


def consume_loop(stream: DeliveryStream, handler: Handler) -> None:
    """Invoke ``handler`` once per delivery, in order, until the stream closes."""
    for message in stream:
        try:
            handler(message)
        except Exception as e:
            logger.exception("Error handling message: %s", e)
    logger.debug("Delivery stream closed, consume loop exiting")


class DeliveryDispatcher:
    """
    Drains a consume channel on a daemon thread.

    The thread is started when the first stream is registered and exits once
    the channel closes or no consumers remain; registering again restarts it.
    When it exits because of a channel error every remaining stream is closed.
    """

    def __init__(self, channel: Channel) -> None:
        self._channel = channel
        self._lock = threading.Lock()
        self._streams: Dict[str, DeliveryStream] = {}
        self._thread: Optional[threading.Thread] = None

    def register(self, consumer_tag: str, stream: DeliveryStream) -> None:
        with self._lock:
            self._streams[consumer_tag] = stream
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(
                    target=self._dispatch_loop,
                    name="amqp-store-dispatcher",
                    daemon=True,
                )
                self._thread.start()

    def unregister(self, consumer_tag: str) -> None:
        with self._lock:
            stream = self._streams.pop(consumer_tag, None)
        if stream is not None:
            stream.close()

    def close(self) -> None:
        """Close every registered stream. Does not touch the channel."""
        with self._lock:
            streams = list(self._streams.values())
            self._streams.clear()
        for stream in streams:
            stream.close()

    def _close_cancelled_streams(self) -> None:
        # the broker may cancel consumers on its own (e.g. queue deleted)
        active_tags = set(self._channel.consumer_tags)
        for consumer_tag in list(self._streams):
            if consumer_tag not in active_tags:
                logger.info("Consumer %s was cancelled", consumer_tag)
                self._streams.pop(consumer_tag).close()

    def _dispatch_loop(self) -> None:
        try:
            while not self._channel.is_closed:
                with self._lock:
                    self._close_cancelled_streams()
                    if not self._streams:
                        self._thread = None
                        return
                # runs the registered consumer callbacks for pending deliveries
                self._channel.process_data_events(auto_decode=False)
                time.sleep(DISPATCH_IDLE_WAIT)
            logger.info("Consume channel closed")
        except AMQPError as e:
            logger.info("Consume channel closed: %s", e)
        except Exception as e:
            logger.exception("Unexpected error dispatching deliveries: %s", e)

        # clear the thread and the streams together so a concurrent register
        # starts a fresh dispatcher whose stream this one never touches
        with self._lock:
            self._thread = None
            streams = list(self._streams.values())
            self._streams.clear()
        for stream in streams:
            stream.close()


class Subscription:
    """
    Handle returned by ``Store.subscribe``.

    Holding on to it is optional: the consume loop keeps running until its
    stream closes whether or not the handle is kept.
    """

    def __init__(
        self,
        consumer_tag: str,
        queue_name: str,
        stream: DeliveryStream,
        handler: Handler,
        cancel_callback: Callable[[str], None],
    ) -> None:
        self.consumer_tag = consumer_tag
        self.queue_name = queue_name
        self._stream = stream
        self._cancel_callback = cancel_callback
        self._thread = threading.Thread(
            target=consume_loop,
            args=(stream, handler),
            name=f"amqp-store-consumer-{consumer_tag}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    @property
    def is_active(self) -> bool:
        return self._thread.is_alive()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the consume loop exits.

        Returns:
            True if the loop has exited, False if the timeout elapsed first
        """
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def cancel(self) -> None:
        """Cancel the consumer on the broker and end the consume loop."""
        if self._stream.is_closed:
            return
        self._cancel_callback(self.consumer_tag)

    def __repr__(self) -> str:
        return (
            f"Subscription(consumer_tag={self.consumer_tag!r}, "
            f"queue_name={self.queue_name!r}, active={self.is_active})"
        )
