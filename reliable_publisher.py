#!/usr/bin/env python3
"""
Reliable Publisher - publishes one message and waits for the broker to confirm it
"""

import logging
import time
from typing import Any, Dict

import pika
import pika.exceptions

from broker_connection import close_quietly

logger = logging.getLogger('reliable_publisher')


class ReliablePublisher:
    """
    Publishing capability bound to a single channel.

    The channel is switched to confirm mode once, when the publisher is
    created. With confirms enabled pika's BlockingChannel.basic_publish does
    not return until the broker has acknowledged the message, and raises
    NackError / UnroutableError if it refuses it.
    """

    def __init__(self, channel, connection=None):
        """
        Args:
            channel: A pika BlockingChannel owned by the calling thread
            connection: The connection the channel belongs to, when the
                publisher owns it and has to close it
        """
        self.channel = channel
        self.connection = connection
        self.channel.confirm_delivery()

    def is_open(self) -> bool:
        """
        Check whether the channel can still publish.

        An idle BlockingConnection only notices a dropped socket or a missed
        heartbeat when it next processes I/O, so pending events are handled
        first.
        """
        try:
            if self.connection is not None:
                self.connection.process_data_events(time_limit=0)
                if not self.connection.is_open:
                    return False
            return self.channel.is_open
        except pika.exceptions.AMQPError as e:
            logger.info(f"Publisher connection is no longer usable: {e!r}")
            return False

    def close(self) -> None:
        """Close the owned connection, or just the channel when there is none."""
        if self.connection is not None:
            close_quietly(self.connection, "publisher connection")
        else:
            close_quietly(self.channel, "publisher channel")

    def publish(
        self,
        exchange: str,
        routing_key: str,
        attributes: Dict[str, Any],
        payload: bytes
    ) -> None:
        """
        Publish a message and block until the broker confirms it.

        Args:
            exchange: Exchange to publish to
            routing_key: Routing key used by the exchange
            attributes: Message properties (correlation_id, content_type, ...)
            payload: Message body

        Raises:
            pika.exceptions.AMQPError: The broker refused the message or the
                channel failed. Nothing is retried.
        """
        logger.debug(
            f"Publishing message to exchange \"{exchange}\" with routing key \"{routing_key}\""
        )
        logger.debug(f"Published message has payload {payload!r} and attributes: {attributes}")

        message_attributes = {'delivery_mode': 2}  # make message persistent
        message_attributes.update(attributes)
        message_attributes['timestamp'] = int(time.time())
        properties = pika.BasicProperties(**message_attributes)
        self.channel.basic_publish(
            exchange=exchange,
            routing_key=routing_key,
            body=payload,
            properties=properties,
            mandatory=True
        )
