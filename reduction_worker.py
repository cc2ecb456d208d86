#!/usr/bin/env python3
"""
Reduction Worker - sums a list of numbers one step per message

A task message carries the list still to be summed. The worker adds the
first two elements and publishes the list, now one element shorter, back on
the task routing key. Once the list collapses to a single number that number
is published on the result routing key. The correlation id of the original
request travels with every message of the chain.
"""

import logging
import time
from typing import Any, List, Union

from payload_codec import (
    CONTENT_TYPE,
    decode_payload,
    encode_error,
    encode_payload,
    is_number,
)

logger = logging.getLogger('reduction_worker')

Number = Union[int, float]


class ReductionError(ValueError):
    """The payload of a task message cannot be reduced."""


def plus_reduction(numbers: Any) -> Union[Number, List[Number]]:
    """
    Given a list, return a list with one fewer element. The first element of
    the output is the sum of the first and second elements of the input, the
    remaining elements are carried over unchanged.

    If the list is empty, return zero. If it has exactly one element, return
    that element.

        plus_reduction([]) => 0
        plus_reduction([1]) => 1
        plus_reduction([1, 2]) => [3]
        plus_reduction([1, 2, 3]) => [3, 3]
        plus_reduction([1, 2, 3, 4]) => [3, 3, 4]
    """
    if not isinstance(numbers, list):
        raise ReductionError(f"Not a collection: {numbers!r}")
    for element in numbers:
        if not is_number(element):
            raise ReductionError(f"Not a number: {element!r}")

    if len(numbers) == 0:
        return 0
    if len(numbers) == 1:
        return numbers[0]
    return [numbers[0] + numbers[1]] + numbers[2:]


class ReductionWorker:
    """
    Message handler for the task queue. It acts as both consumer and
    producer: every task it takes is republished, either as a shorter task
    or as a result.
    """

    def __init__(self, topology, publisher, step_delay: float = 10.0):
        """
        Args:
            topology: TaskTopology naming the exchange and routing keys
            publisher: ReliablePublisher bound to the consuming channel
            step_delay: Seconds to sleep per step to simulate computation time
        """
        self.topology = topology
        self.publisher = publisher
        self.step_delay = step_delay

    def reduce(self, body: bytes):
        """Apply one step to a message body. Returns (routing_key, payload)."""
        try:
            result = plus_reduction(decode_payload(body))
            # a sum can overflow to infinity, which JSON cannot carry
            payload = encode_payload(result)
        except ValueError as e:  # ReductionError, malformed JSON or a non-finite sum
            logger.warning(f"Cannot reduce payload {body!r}: {e}")
            return self.topology.result_routing_key, encode_error(str(e))

        if isinstance(result, list):
            return self.topology.task_routing_key, payload
        return self.topology.result_routing_key, payload

    def on_message(self, ch, method, properties, body):
        correlation_id = properties.correlation_id
        logger.info(f"Received task {correlation_id}: {body!r}")

        routing_key, payload = self.reduce(body)

        if self.step_delay > 0:
            logger.debug(f"Sleeping for {self.step_delay} seconds to simulate computation time")
            time.sleep(self.step_delay)

        # Errors from the broker propagate and leave the delivery unacked
        self.publisher.publish(
            self.topology.exchange,
            routing_key,
            {'correlation_id': correlation_id, 'content_type': CONTENT_TYPE},
            payload
        )
        logger.info(f"Published {routing_key} {payload!r} for {correlation_id}")

        ch.basic_ack(delivery_tag=method.delivery_tag)
