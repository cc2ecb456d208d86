#!/usr/bin/env python3
"""
Result Archiver - stores each result message under its correlation id
"""

import logging

logger = logging.getLogger('result_archiver')


class ResultArchiver:
    """Message handler for the result queue. Terminates every chain."""

    def __init__(self, store):
        self.store = store

    def on_message(self, ch, method, properties, body):
        correlation_id = properties.correlation_id
        if not correlation_id or self.store.path_for(correlation_id) is None:
            logger.error(f"Dropping result without a usable correlation id: {correlation_id!r}")
            ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
            return

        path = self.store.write(correlation_id, body)
        logger.info(f"Wrote result for task id {correlation_id} to {path}")

        ch.basic_ack(delivery_tag=method.delivery_tag)
