"""Shared fixtures: an in-memory stand-in for RabbitMQ with direct routing and confirms."""

import threading
from collections import deque
from types import SimpleNamespace

import pika.exceptions
import pytest

from reduction_worker import ReductionWorker
from reliable_publisher import ReliablePublisher
from result_archiver import ResultArchiver
from result_store import ResultStore
from topology import TaskTopology


class FakeBroker:
    """Routes published messages to bound queues and hands them to registered consumers."""

    def __init__(self):
        self.lock = threading.RLock()
        self.exchanges = {}
        self.queues = {}
        self.bindings = set()
        self.consumers = {}
        self.published = []
        self._tags = 0

    def channel(self):
        return FakeChannel(self)

    def connection(self):
        return FakeConnection(self)

    def next_tag(self):
        with self.lock:
            self._tags += 1
            return self._tags

    def route(self, exchange, routing_key, body, properties, mandatory):
        with self.lock:
            if exchange not in self.exchanges:
                raise pika.exceptions.ChannelClosedByBroker(404, f"NOT_FOUND - no exchange '{exchange}'")
            targets = sorted(
                queue for (bound_exchange, queue, key) in self.bindings
                if bound_exchange == exchange and key == routing_key
            )
            if not targets and mandatory:
                raise pika.exceptions.UnroutableError([])
            self.published.append(SimpleNamespace(
                exchange=exchange, routing_key=routing_key, body=body, properties=properties
            ))
            for queue in targets:
                self.queues[queue].append((exchange, routing_key, properties, body))

    def messages(self, routing_key=None):
        return [m for m in self.published if routing_key is None or m.routing_key == routing_key]

    def _next_delivery(self):
        with self.lock:
            for queue, messages in self.queues.items():
                if messages and queue in self.consumers:
                    return self.consumers[queue], messages.popleft()
        return None, None

    def drain(self, max_deliveries=1000):
        """Deliver queued messages to consumers until every consumed queue is empty."""
        delivered = 0
        while True:
            consumer, message = self._next_delivery()
            if consumer is None:
                return delivered
            channel, callback = consumer
            exchange, routing_key, properties, body = message
            tag = self.next_tag()
            channel.unacked[tag] = message
            method = SimpleNamespace(delivery_tag=tag, exchange=exchange, routing_key=routing_key)
            callback(channel, method, properties, body)
            delivered += 1
            assert delivered <= max_deliveries, "pipeline did not converge"


class FakeChannel:
    def __init__(self, broker):
        self.broker = broker
        self.is_open = True
        self.confirming = False
        self.prefetch_count = None
        self.unacked = {}
        self.acked = []
        self.nacked = []
        self._stop = threading.Event()

    def confirm_delivery(self):
        self.confirming = True

    def exchange_declare(self, exchange, exchange_type='direct', **kwargs):
        with self.broker.lock:
            existing = self.broker.exchanges.get(exchange)
            if existing is not None and existing != exchange_type:
                raise pika.exceptions.ChannelClosedByBroker(406, 'PRECONDITION_FAILED')
            self.broker.exchanges[exchange] = exchange_type

    def exchange_delete(self, exchange=None, **kwargs):
        with self.broker.lock:
            self.broker.exchanges.pop(exchange, None)
            self.broker.bindings = {b for b in self.broker.bindings if b[0] != exchange}

    def queue_declare(self, queue, **kwargs):
        with self.broker.lock:
            self.broker.queues.setdefault(queue, deque())
        return SimpleNamespace(method=SimpleNamespace(queue=queue))

    def queue_bind(self, queue, exchange, routing_key=None, **kwargs):
        with self.broker.lock:
            if exchange not in self.broker.exchanges or queue not in self.broker.queues:
                raise pika.exceptions.ChannelClosedByBroker(404, 'NOT_FOUND')
            self.broker.bindings.add((exchange, queue, routing_key))

    def queue_delete(self, queue, **kwargs):
        with self.broker.lock:
            self.broker.queues.pop(queue, None)
            self.broker.bindings = {b for b in self.broker.bindings if b[1] != queue}

    def basic_qos(self, prefetch_count=0, **kwargs):
        self.prefetch_count = prefetch_count

    def basic_consume(self, queue, on_message_callback, **kwargs):
        with self.broker.lock:
            self.broker.consumers[queue] = (self, on_message_callback)
        return f"ctag-{queue}"

    def basic_publish(self, exchange, routing_key, body, properties=None, mandatory=False):
        if not self.is_open:
            raise pika.exceptions.ChannelWrongStateError("Channel is closed")
        self.broker.route(exchange, routing_key, body, properties, mandatory)

    def basic_ack(self, delivery_tag=0, multiple=False):
        self.unacked.pop(delivery_tag)
        self.acked.append(delivery_tag)

    def basic_nack(self, delivery_tag=0, multiple=False, requeue=True):
        self.unacked.pop(delivery_tag)
        self.nacked.append((delivery_tag, requeue))

    def start_consuming(self):
        self._stop.wait()

    def stop_consuming(self):
        self._stop.set()

    def close(self):
        self.is_open = False
        self._stop.set()


class FakeConnection:
    def __init__(self, broker):
        self.broker = broker
        self.is_open = True
        self.channels = []
        self.lost = None

    def channel(self):
        channel = self.broker.channel()
        self.channels.append(channel)
        return channel

    def add_callback_threadsafe(self, callback):
        callback()

    def lose(self, error):
        """Drop the socket; the connection only notices on its next I/O."""
        self.lost = error

    def process_data_events(self, time_limit=0):
        if self.lost is not None:
            error, self.lost = self.lost, None
            self.close()
            raise error
        if not self.is_open:
            raise pika.exceptions.ConnectionWrongStateError("Connection is closed")

    def close(self):
        self.is_open = False
        for channel in self.channels:
            channel.close()


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def topology():
    return TaskTopology(exchange='test-exchange')


@pytest.fixture
def store(tmp_path):
    return ResultStore(str(tmp_path / 'results'))


@pytest.fixture
def pipeline(broker, topology, store):
    """Declared topology with a worker and an archiver subscribed on their own channels."""
    topology.declare(broker.channel())

    worker_channel = broker.channel()
    worker = ReductionWorker(topology, ReliablePublisher(worker_channel), step_delay=0)
    worker_channel.basic_consume(queue=topology.task_queue, on_message_callback=worker.on_message)

    archiver_channel = broker.channel()
    archiver = ResultArchiver(store)
    archiver_channel.basic_consume(queue=topology.result_queue, on_message_callback=archiver.on_message)

    return SimpleNamespace(
        broker=broker,
        topology=topology,
        store=store,
        worker_channel=worker_channel,
        archiver_channel=archiver_channel
    )


@pytest.fixture
def publisher_factory(broker):
    def factory():
        connection = broker.connection()
        return ReliablePublisher(connection.channel(), connection)
    return factory
