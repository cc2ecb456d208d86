#!/usr/bin/env python3
"""
Task Queue Service - HTTP service that sums lists of numbers through a task queue

Given a list of numbers, the service computes the sum of its elements. For
the sake of demonstration the computation is performed in a contrived and
extremely inefficient manner with messaging.

When the service receives a HTTP request it publishes a task message with a
unique correlation id and answers with the location of the result. A worker
subscribed to the task queue adds the first two numbers and publishes the
shorter list back to the task queue, so messages loop around until a single
number is left. That number is routed to the result queue, whose consumer
stores it in a file named after the correlation id. The service then serves
the result by id.

Run with: python task_queue_service.py --http-port 8080 --path-prefix /tmp
"""

import argparse
import logging
import sys
import threading

import uvicorn

from broker_connection import QueueConsumer, close_quietly, setup_rabbitmq_connection
from config import LOG_FORMAT, RABBITMQ_CONFIG, TASK_QUEUE_CONFIG
from reduction_worker import ReductionWorker
from reliable_publisher import ReliablePublisher
from result_archiver import ResultArchiver
from result_store import ResultStore
from task_gateway import TaskGateway, create_app
from topology import TaskTopology

logger = logging.getLogger('task_queue_service')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Task queue service that sums numbers through RabbitMQ")
    parser.add_argument("--path-prefix", default=TASK_QUEUE_CONFIG['path_prefix'],
                        help="Directory where results will be saved")
    parser.add_argument("--http-port", type=int, default=TASK_QUEUE_CONFIG['http_port'],
                        help="HTTP server port")
    parser.add_argument("--http-host", default=TASK_QUEUE_CONFIG['http_host'],
                        help="HTTP server interface")
    parser.add_argument("--exchange", default=TASK_QUEUE_CONFIG['exchange'],
                        help="Name of the direct exchange")
    parser.add_argument("--step-delay", type=float, default=TASK_QUEUE_CONFIG['step_delay'],
                        help="Seconds each reduction step sleeps to simulate work")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


class TaskQueueService:
    """Wires topology, consumers and the HTTP API together and tears them down."""

    def __init__(
        self,
        topology: TaskTopology,
        store: ResultStore,
        step_delay: float,
        connection_factory=None
    ):
        self.topology = topology
        self.store = store
        self.step_delay = step_delay
        self.connection_factory = connection_factory or (lambda: setup_rabbitmq_connection(RABBITMQ_CONFIG))

        self.failed = threading.Event()
        self.server = None
        self.consumers = []
        self._setup_connection = None
        self._setup_channel = None
        self.gateway = None

    def _make_worker(self, channel):
        worker = ReductionWorker(self.topology, ReliablePublisher(channel), self.step_delay)
        return worker.on_message

    def _make_archiver(self, channel):
        return ResultArchiver(self.store).on_message

    def _new_publisher(self) -> ReliablePublisher:
        connection = self.connection_factory()
        try:
            return ReliablePublisher(connection.channel(), connection)
        except Exception:
            close_quietly(connection, "publisher connection")
            raise

    def _on_consumer_failure(self, name, error):
        logger.error(f"Consumer {name} failed, stopping service: {error!r}")
        self.failed.set()
        if self.server is not None:
            self.server.should_exit = True

    def consumer_status(self):
        return {consumer.name: consumer.is_alive() for consumer in self.consumers}

    def start(self):
        """Declare the topology and start worker and archiver. Broker errors propagate."""
        self._setup_connection = self.connection_factory()
        self._setup_channel = self._setup_connection.channel()
        self.topology.declare(self._setup_channel)

        self.consumers = [
            QueueConsumer(
                'reduction_worker',
                self.topology.task_queue,
                self._make_worker,
                connection_factory=self.connection_factory,
                on_failure=self._on_consumer_failure
            ),
            QueueConsumer(
                'result_archiver',
                self.topology.result_queue,
                self._make_archiver,
                connection_factory=self.connection_factory,
                on_failure=self._on_consumer_failure
            )
        ]
        for consumer in self.consumers:
            if not consumer.start(timeout=30):
                raise RuntimeError(f"Consumer {consumer.name} did not start: {consumer.error!r}")

    def create_app(self):
        self.gateway = TaskGateway(self.topology, self._new_publisher)
        return create_app(self.gateway, self.store, consumer_status=self.consumer_status)

    def run(self, host: str, port: int, log_level: str = "info") -> int:
        """Serve HTTP until interrupted. Returns the process exit status."""
        config = uvicorn.Config(self.create_app(), host=host, port=port, log_level=log_level)
        self.server = uvicorn.Server(config)
        if self.failed.is_set():
            # a consumer died before there was a server to stop
            return 1
        logger.info(f"HTTP server is listening on port {port}")
        self.server.run()
        return 1 if self.failed.is_set() else 0

    def shutdown(self):
        """Best-effort cleanup; nothing here may keep the process from exiting."""
        logger.debug("Shutting down task queue service")
        for consumer in self.consumers:
            consumer.stop()
        if self._setup_channel is not None:
            try:
                if self._setup_channel.is_open:
                    self.topology.teardown(self._setup_channel)
            except Exception as e:
                logger.debug(f"Ignoring failure during topology teardown: {e}")
        close_quietly(self._setup_channel, "setup channel")
        close_quietly(self._setup_connection, "setup connection")
        if self.gateway is not None:
            self.gateway.close()


def main(argv=None):
    args = parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)
    # Only show our own logs, not pika's internal logs
    logging.getLogger('pika').setLevel(logging.WARNING)

    topology = TaskTopology.from_config(exchange=args.exchange)
    service = TaskQueueService(topology, ResultStore(args.path_prefix), args.step_delay)

    status = 0
    try:
        service.start()
        status = service.run(args.http_host, args.http_port, log_level=args.log_level.lower())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except Exception as e:
        logger.error(f"Task queue service failed: {e!r}")
        status = 1
    finally:
        service.shutdown()
    sys.exit(status)


if __name__ == "__main__":
    main()
