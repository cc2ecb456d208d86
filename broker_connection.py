#!/usr/bin/env python3
"""
Broker connections - connection factory and consumer threads for RabbitMQ

pika's BlockingConnection must only be used from the thread that created it,
so every consumer opens its own connection inside its own thread.
"""

import logging
import threading
from typing import Callable, Optional

import pika
import pika.exceptions

from config import RABBITMQ_CONFIG

logger = logging.getLogger('broker_connection')


def get_connection_parameters(config=None) -> pika.ConnectionParameters:
    """Create connection parameters for RabbitMQ."""
    config = config or RABBITMQ_CONFIG
    credentials = pika.PlainCredentials(
        config['username'],
        config['password']
    )
    return pika.ConnectionParameters(
        host=config['host'],
        port=config['port'],
        virtual_host=config['vhost'],
        credentials=credentials,
        heartbeat=config.get('heartbeat'),
        connection_attempts=config.get('connection_attempts', 1),
        retry_delay=config.get('retry_delay', 2.0)
    )


def setup_rabbitmq_connection(config=None) -> pika.BlockingConnection:
    """Establish connection to RabbitMQ server. Connection errors are raised."""
    parameters = get_connection_parameters(config)
    try:
        connection = pika.BlockingConnection(parameters)
    except pika.exceptions.AMQPConnectionError as e:
        logger.error(f"Failed to connect to RabbitMQ at {parameters.host}:{parameters.port}: {e}")
        raise
    logger.info(f"Connected to RabbitMQ at {parameters.host}:{parameters.port}")
    return connection


def close_quietly(resource, name: str) -> None:
    """Close a channel or connection, ignoring any failure."""
    try:
        if resource is not None and resource.is_open:
            resource.close()
    except Exception as e:
        logger.debug(f"Ignoring failure while closing {name}: {e}")


class QueueConsumer:
    """
    Consumes one queue in a background thread for the lifetime of the process.

    `make_handler` receives the consumer's private channel and returns the
    pika on_message_callback, so handlers can bind a publisher to that
    channel. Any exception escaping the consumer loop is reported through
    `on_failure`.
    """

    def __init__(
        self,
        name: str,
        queue: str,
        make_handler: Callable,
        connection_factory: Callable = setup_rabbitmq_connection,
        on_failure: Optional[Callable[[str, BaseException], None]] = None,
        prefetch_count: int = 1
    ):
        self.name = name
        self.queue = queue
        self.make_handler = make_handler
        self.connection_factory = connection_factory
        self.on_failure = on_failure
        self.prefetch_count = prefetch_count

        self._connection = None
        self._channel = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._stopping = False
        self.error: Optional[BaseException] = None

    def start(self, timeout: Optional[float] = None) -> bool:
        """Start consuming in a daemon thread; waits until the consumer is registered."""
        self._thread = threading.Thread(
            target=self._consume,
            name=f"consumer-{self.name}",
            daemon=True
        )
        self._thread.start()
        self._ready.wait(timeout)
        return self.error is None and self._ready.is_set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _consume(self):
        try:
            self._connection = self.connection_factory()
            self._channel = self._connection.channel()
            self._channel.basic_qos(prefetch_count=self.prefetch_count)
            self._channel.basic_consume(
                queue=self.queue,
                on_message_callback=self.make_handler(self._channel)
            )
            logger.info(f"{self.name} started consuming from queue: {self.queue}")
            self._ready.set()

            # Blocks until stop() or a broker failure
            self._channel.start_consuming()
        except Exception as e:
            if self._stopping:
                logger.debug(f"{self.name} consumer stopped with: {e}")
            else:
                logger.error(f"Error in {self.name} consumer for queue {self.queue}: {e}")
                self.error = e
                if self.on_failure:
                    self.on_failure(self.name, e)
        finally:
            self._ready.set()
            close_quietly(self._connection, f"{self.name} connection")
            logger.info(f"{self.name} stopped consuming from queue: {self.queue}")

    def stop(self, timeout: float = 2.0) -> None:
        """Ask the consumer loop to stop and wait briefly for the thread to exit."""
        self._stopping = True
        connection, channel = self._connection, self._channel
        if connection is not None and channel is not None:
            try:
                connection.add_callback_threadsafe(channel.stop_consuming)
            except Exception as e:
                logger.debug(f"Ignoring failure while stopping {self.name}: {e}")
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
