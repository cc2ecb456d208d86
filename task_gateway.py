#!/usr/bin/env python3
"""
Task Gateway - HTTP API that submits computation tasks and serves their results

POST /compute enqueues a list of numbers and answers 202 with the location
of the result. GET /result/{id} returns the archived result once the chain
of reduction steps has completed, and 404 until then.
"""

import logging
import threading
import uuid
from typing import Callable, Dict, List, Optional, Union

import pika.exceptions
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse, Response
from pydantic import StrictInt, TypeAdapter, ValidationError, confloat

from payload_codec import CONTENT_TYPE, ResultError, decode_result, encode_payload

logger = logging.getLogger('task_gateway')

# NaN and infinity have no JSON representation on the task path
Numbers = List[Union[StrictInt, confloat(strict=True, allow_inf_nan=False)]]
NUMBERS_ADAPTER = TypeAdapter(Numbers)


def parse_numbers(body: bytes) -> list:
    """
    Validate a request body as a JSON array of numbers, whatever its content type.

    Raises:
        RequestValidationError: answered by FastAPI with 422
    """
    try:
        return NUMBERS_ADAPTER.validate_json(body)
    except ValidationError as e:
        errors = [
            {**error, 'loc': ('body',) + tuple(error['loc'])}
            for error in e.errors(include_url=False, include_input=False)
        ]
        raise RequestValidationError(errors)


class TaskGateway:
    """
    Submits initial task messages.

    HTTP handlers run on a thread pool and pika channels must not be shared
    between threads, so every thread lazily gets its own publisher from
    `publisher_factory`. A publisher whose connection broke is closed and
    replaced on the next request of its thread.
    """

    def __init__(self, topology, publisher_factory: Callable):
        self.topology = topology
        self.publisher_factory = publisher_factory
        self._local = threading.local()
        self._publishers = set()
        self._lock = threading.Lock()

    def _publisher(self):
        publisher = getattr(self._local, 'publisher', None)
        if publisher is not None and not publisher.is_open():
            logger.info("Publisher connection went stale, reconnecting")
            self._discard(publisher)
            publisher = None
        if publisher is None:
            publisher = self.publisher_factory()
            with self._lock:
                self._publishers.add(publisher)
            self._local.publisher = publisher
        return publisher

    def _discard(self, publisher) -> None:
        self._local.publisher = None
        with self._lock:
            self._publishers.discard(publisher)
        publisher.close()

    def submit(self, numbers: list) -> str:
        """Publish the initial task message and return the new correlation id."""
        correlation_id = str(uuid.uuid4())
        payload = encode_payload(numbers)
        publisher = self._publisher()
        try:
            publisher.publish(
                self.topology.exchange,
                self.topology.task_routing_key,
                {'correlation_id': correlation_id, 'content_type': CONTENT_TYPE},
                payload
            )
        except pika.exceptions.AMQPError as e:
            # the channel is unusable now; the next request on this thread opens a new one
            logger.error(f"Failed to submit task {correlation_id}: {e!r}")
            self._discard(publisher)
            raise
        logger.info(f"Submitted task {correlation_id} with {len(numbers)} numbers")
        return correlation_id

    def close(self) -> None:
        """Close every publisher handed out so far."""
        with self._lock:
            publishers, self._publishers = self._publishers, set()
        for publisher in publishers:
            publisher.close()


def create_app(
    gateway: TaskGateway,
    store,
    consumer_status: Optional[Callable[[], Dict[str, bool]]] = None
) -> FastAPI:
    """Build the HTTP API around a gateway and the result store."""
    app = FastAPI(title="Task Queue Service")

    # The body is read raw so clients need not send a JSON content type.
    # Publishing blocks until the broker confirms, so it runs on the thread pool.
    @app.post("/compute", status_code=202, response_class=PlainTextResponse)
    async def compute(request: Request):
        """Enqueue the sum of a list of numbers."""
        numbers = parse_numbers(await request.body())
        correlation_id = await run_in_threadpool(gateway.submit, numbers)
        return PlainTextResponse(f"/result/{correlation_id}", status_code=202)

    @app.get("/result/{result_id}")
    def get_result(result_id: str):
        """Look up an archived result by id."""
        logger.debug(f"Reading result for task id {result_id}")
        payload = store.read(result_id)
        if payload is None:
            return PlainTextResponse("Result not found", status_code=404)

        result = decode_result(payload)
        if isinstance(result, ResultError):
            return PlainTextResponse(f"Computation failed: {result.reason}", status_code=422)
        return Response(content=payload, media_type=CONTENT_TYPE)

    @app.get("/health/messaging")
    def check_messaging_health():
        """Check if the pipeline consumers are running."""
        consumers = consumer_status() if consumer_status else {}
        connected = bool(consumers) and all(consumers.values())
        return {
            "status": "connected" if connected else "disconnected",
            "consumers": consumers
        }

    @app.get("/")
    def root():
        return {"message": "Task Queue Service", "status": "running"}

    return app
