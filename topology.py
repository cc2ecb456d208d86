#!/usr/bin/env python3
"""
Topology Setup - the exchange, queues and bindings shared by gateway, worker and archiver
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from config import TASK_QUEUE_CONFIG

logger = logging.getLogger('topology')


@dataclass(frozen=True)
class TaskTopology:
    """Routing contract of the pipeline, passed to every component."""
    exchange: str = 'exchange'
    exchange_type: str = 'direct'
    task_routing_key: str = 'task'
    result_routing_key: str = 'result'
    task_queue_name: Optional[str] = None
    result_queue_name: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any] = None, **overrides) -> 'TaskTopology':
        config = dict(config or TASK_QUEUE_CONFIG)
        config.update({key: value for key, value in overrides.items() if value is not None})
        return cls(
            exchange=config['exchange'],
            exchange_type=config.get('exchange_type', 'direct'),
            task_routing_key=config['task_routing_key'],
            result_routing_key=config['result_routing_key'],
            task_queue_name=config.get('task_queue_name'),
            result_queue_name=config.get('result_queue_name')
        )

    @property
    def task_queue(self) -> str:
        return self.task_queue_name or f"{self.exchange}.{self.task_routing_key}"

    @property
    def result_queue(self) -> str:
        return self.result_queue_name or f"{self.exchange}.{self.result_routing_key}"

    def bindings(self):
        """(queue, routing_key) pairs bound to the exchange."""
        return [
            (self.task_queue, self.task_routing_key),
            (self.result_queue, self.result_routing_key)
        ]

    def declare(self, channel) -> None:
        """
        Declare the exchange and both queues, and bind each queue to its routing key.

        Declarations and bindings are identical on every call, so declaring
        again is a no-op at the broker.
        """
        channel.exchange_declare(
            exchange=self.exchange,
            exchange_type=self.exchange_type
        )
        logger.info(f"Exchange {self.exchange} ({self.exchange_type}) declared")

        for queue, routing_key in self.bindings():
            channel.queue_declare(queue=queue, auto_delete=True)
            channel.queue_bind(
                exchange=self.exchange,
                queue=queue,
                routing_key=routing_key
            )
            logger.info(f"Queue {queue} bound to {self.exchange} with routing key {routing_key}")

    def teardown(self, channel) -> None:
        """
        Best-effort removal of exchange and queues. Failures are logged and ignored.

        Deleting the exchange drops its bindings. The exchange goes first:
        a failing call closes the channel, and the auto-delete queues may
        already be gone once their consumers stopped.
        """
        try:
            channel.exchange_delete(exchange=self.exchange)
        except Exception as e:
            logger.debug(f"Ignoring failure while removing exchange {self.exchange}: {e}")
        for queue, _ in self.bindings():
            try:
                channel.queue_delete(queue=queue)
            except Exception as e:
                logger.debug(f"Ignoring failure while removing queue {queue}: {e}")
