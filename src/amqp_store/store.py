"""
AMQP store: publish/subscribe facade over two broker connections.

The store owns one connection and channel dedicated to publishing and one
dedicated to consuming. It is created not running; ``start`` dials the broker
and ``shutdown`` closes everything again. A store can be started again after
a shutdown.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlsplit

from amqpstorm import AMQPError, Channel, Connection

from amqp_store.config import ConsumeConfig, ExchangeConfig, PublishConfig
from amqp_store.constants import (
    DEFAULT_DIAL_TIMEOUT,
    DEFAULT_PORT,
    DEFAULT_VIRTUAL_HOST,
    HEARTBEAT_INTERVAL,
)
from amqp_store.consumer import (
    DeliveryDispatcher,
    DeliveryStream,
    Handler,
    Subscription,
)
from amqp_store.exceptions import StoreNotRunningError, TransportError

logger = logging.getLogger(__name__)


def connection_params(dsn: str, timeout: float) -> Dict[str, Any]:
    """
    Translate a DSN into AMQPStorm connection parameters.

    Credentials are taken verbatim, mirroring ``Config.dsn`` which does not
    escape them.
    """
    parts = urlsplit(dsn)
    netloc = parts.netloc
    credentials, _, address = netloc.rpartition("@")
    username, _, password = credentials.partition(":")
    hostname, _, port = address.rpartition(":")
    if not hostname:
        hostname, port = address, ""
    virtual_host = parts.path[1:] or DEFAULT_VIRTUAL_HOST

    return {
        "hostname": hostname,
        "port": int(port) if port else DEFAULT_PORT,
        "username": username,
        "password": password,
        "virtual_host": virtual_host,
        "heartbeat": HEARTBEAT_INTERVAL,
        "timeout": timeout,
    }


class Store:
    """
    Publish/subscribe store backed by RabbitMQ.

    Lifecycle state (the running flag and the four broker handles) is guarded
    by a lock held for the duration of ``start``, ``shutdown``, ``publish``
    and ``subscribe``, so a shutdown never closes handles under an in-flight
    call. Handlers run on their own consume-loop threads and may call back
    into the store.
    """

    def __init__(self, dsn: str, timeout: float = DEFAULT_DIAL_TIMEOUT) -> None:
        """
        Args:
            dsn: Connection string, usually from ``Config.dsn()``
            timeout: Dial timeout in seconds, applied on ``start``
        """
        self._dsn = dsn
        self._timeout = timeout
        self._lock = threading.RLock()
        self._running = False

        self._publish_connection: Optional[Connection] = None
        self._consume_connection: Optional[Connection] = None
        self._publish_channel: Optional[Channel] = None
        self._consume_channel: Optional[Channel] = None
        self._dispatcher: Optional[DeliveryDispatcher] = None

    @property
    def dsn(self) -> str:
        return self._dsn

    def is_running(self) -> bool:
        return self._running

    def _dial(self) -> Connection:
        params = connection_params(self._dsn, self._timeout)
        logger.info(
            "Dialing RabbitMQ at %s:%s with heartbeat=%ss timeout=%ss",
            params["hostname"],
            params["port"],
            params["heartbeat"],
            params["timeout"],
        )
        return Connection(**params)

    def start(self) -> None:
        """
        Dial the broker and open the publish and consume channels.

        Opens, in order: publish connection, publish channel, consume
        connection, consume channel. If any step fails, everything opened so
        far is closed in reverse order before the error is raised.

        Raises:
            TransportError: If a connection or channel cannot be opened
        """
        with self._lock:
            if self._running:
                logger.warning("Store is already running, ignoring start")
                return

            opened: List[Union[Connection, Channel]] = []
            try:
                publish_connection = self._dial()
                opened.append(publish_connection)
                publish_channel = publish_connection.channel()
                opened.append(publish_channel)
                consume_connection = self._dial()
                opened.append(consume_connection)
                consume_channel = consume_connection.channel()
                opened.append(consume_channel)
            except AMQPError as e:
                logger.error("Failed to start store: %s", e)
                self._close_all(reversed(opened))
                raise TransportError("start", e) from e
            except BaseException:
                self._close_all(reversed(opened))
                raise

            self._publish_connection = publish_connection
            self._publish_channel = publish_channel
            self._consume_connection = consume_connection
            self._consume_channel = consume_channel
            self._dispatcher = DeliveryDispatcher(consume_channel)
            self._running = True
            logger.info("Store started")

    def shutdown(self) -> None:
        """
        Close both channels and connections and mark the store not running.

        Never raises; close failures are logged. Safe to call repeatedly.
        """
        with self._lock:
            handles = [
                self._publish_connection,
                self._publish_channel,
                self._consume_connection,
                self._consume_channel,
            ]
            was_running = self._running

            self._close_all(reversed([h for h in handles if h is not None]))
            if self._dispatcher is not None:
                self._dispatcher.close()

            self._publish_connection = None
            self._publish_channel = None
            self._consume_connection = None
            self._consume_channel = None
            self._dispatcher = None
            self._running = False

            if was_running:
                logger.info("Store shut down")

    @staticmethod
    def _close_all(handles) -> None:
        for handle in handles:
            try:
                if handle.is_open:
                    handle.close()
            except Exception as e:
                logger.warning("Error while closing rabbitmq object %s: %s", handle, e)

    def _ensure_running(self) -> None:
        if not self._running:
            raise StoreNotRunningError()

    @staticmethod
    def _declare_exchange(channel: Channel, exchange: ExchangeConfig) -> None:
        try:
            channel.exchange.declare(
                exchange=exchange.name,
                exchange_type=exchange.type,
                durable=exchange.durable,
                auto_delete=exchange.auto_delete,
                arguments=exchange.args or None,
            )
        except AMQPError as e:
            raise TransportError(f"declare exchange '{exchange.name}'", e) from e
        logger.debug("Exchange declared: %s (%s)", exchange.name, exchange.type)

    def publish(
        self,
        publish_config: PublishConfig,
        body: Union[bytes, str],
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Declare the configured exchange and publish a message to it.

        The exchange is declared on every call; the declaration is a no-op
        when it already exists with the same properties.

        Args:
            publish_config: Exchange, routing key and publish flags
            body: Message payload
            properties: Optional AMQP basic properties (content_type, headers, ...)

        Raises:
            StoreNotRunningError: If the store is not running
            TransportError: If the declaration or the publish fails
        """
        with self._lock:
            self._ensure_running()
            exchange = publish_config.exchange
            self._declare_exchange(self._publish_channel, exchange)

            try:
                self._publish_channel.basic.publish(
                    body=body,
                    routing_key=exchange.routing_key,
                    exchange=exchange.name,
                    properties=properties,
                    mandatory=publish_config.mandatory,
                    immediate=publish_config.immediate,
                )
            except AMQPError as e:
                raise TransportError(f"publish to exchange '{exchange.name}'", e) from e

            logger.debug(
                "Message published to exchange %s with routing key %s",
                exchange.name,
                exchange.routing_key,
            )

    def subscribe(self, consume_config: ConsumeConfig, handler: Handler) -> Subscription:
        """
        Set up the configured topology and start consuming from its queue.

        Declares the exchange, declares the queue, binds the queue to the
        exchange with the routing key and registers a consumer. Returns once
        the consumer is registered; ``handler`` is then called with each
        delivery on a background thread until the consumer is cancelled or
        the store shuts down.

        Args:
            consume_config: Exchange, queue and consumer settings
            handler: Called once per delivered ``amqpstorm.Message``

        Returns:
            Subscription handle (optional to keep)

        Raises:
            StoreNotRunningError: If the store is not running
            TransportError: If any declaration, the binding or the consumer fails
        """
        with self._lock:
            self._ensure_running()
            channel = self._consume_channel
            exchange = consume_config.exchange
            queue_config = exchange.queue

            self._declare_exchange(channel, exchange)

            try:
                result = channel.queue.declare(
                    queue=queue_config.name,
                    durable=queue_config.durable,
                    exclusive=queue_config.exclusive,
                    auto_delete=queue_config.auto_delete,
                    arguments=queue_config.args or None,
                )
            except AMQPError as e:
                raise TransportError(f"declare queue '{queue_config.name}'", e) from e

            # server-generated names are only known after declaring
            queue_name = (result or {}).get("queue") or queue_config.name
            logger.info("Queue declared: %s", queue_name)

            try:
                channel.queue.bind(
                    queue=queue_name,
                    exchange=exchange.name,
                    routing_key=exchange.routing_key,
                )
            except AMQPError as e:
                raise TransportError(
                    f"bind queue '{queue_name}' to exchange '{exchange.name}'", e
                ) from e
            logger.info(
                "Queue %s bound to exchange %s with routing key '%s'",
                queue_name,
                exchange.name,
                exchange.routing_key,
            )

            stream = DeliveryStream(auto_ack=consume_config.auto_ack)
            try:
                consumer_tag = channel.basic.consume(
                    callback=stream.put,
                    queue=queue_name,
                    consumer_tag=consume_config.name,
                    exclusive=consume_config.exclusive,
                    no_ack=consume_config.auto_ack,
                    no_local=consume_config.no_local,
                    arguments=consume_config.args or None,
                )
            except AMQPError as e:
                raise TransportError(f"consume from queue '{queue_name}'", e) from e

            subscription = Subscription(
                consumer_tag=consumer_tag,
                queue_name=queue_name,
                stream=stream,
                handler=handler,
                cancel_callback=self._cancel_consumer,
            )
            subscription.start()
            self._dispatcher.register(consumer_tag, stream)
            logger.info("Consuming from queue %s as %s", queue_name, consumer_tag)
            return subscription

    def _cancel_consumer(self, consumer_tag: str) -> None:
        with self._lock:
            if not self._running:
                return
            try:
                self._consume_channel.basic.cancel(consumer_tag)
            except AMQPError as e:
                raise TransportError(f"cancel consumer '{consumer_tag}'", e) from e
            finally:
                self._dispatcher.unregister(consumer_tag)
            logger.info("Consumer %s cancelled", consumer_tag)

    def __enter__(self) -> "Store":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    def __repr__(self) -> str:
        return f"Store(running={self._running})"
