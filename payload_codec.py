"""
Payload encoding for task and result messages.

Task payloads are JSON arrays of numbers, result payloads are a JSON number.
A failed computation is published on the result path as the error marker
``{"error": "<reason>"}``; being a JSON object it can never be confused with
a number or a list of numbers.
"""

import json
from dataclasses import dataclass
from typing import Any, Union

CONTENT_TYPE = 'application/json'
ERROR_KEY = 'error'


@dataclass(frozen=True)
class ResultValue:
    """A computed answer."""
    value: Union[int, float]


@dataclass(frozen=True)
class ResultError:
    """A computation that could not be carried out."""
    reason: str


def is_number(value: Any) -> bool:
    # bool is a subclass of int, but true/false are not numbers here
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def encode_payload(value: Any) -> bytes:
    """Serialize a number or a list of numbers. Raises ValueError for NaN or infinity."""
    return json.dumps(value, allow_nan=False).encode('utf-8')


def decode_payload(body: bytes) -> Any:
    """Deserialize a message body. Raises ValueError on malformed JSON."""
    return json.loads(body.decode('utf-8'))


def encode_error(reason: str) -> bytes:
    return encode_payload({ERROR_KEY: reason})


def decode_result(body: bytes) -> Union[ResultValue, ResultError]:
    """
    Decode a result payload into its tagged variant.

    Anything that is neither a number nor the error marker is reported as a
    ResultError rather than passed on as an answer.
    """
    try:
        value = decode_payload(body)
    except ValueError as e:
        return ResultError(f"Malformed result payload: {e}")

    if isinstance(value, dict) and ERROR_KEY in value:
        return ResultError(str(value[ERROR_KEY]))
    if is_number(value):
        return ResultValue(value)
    return ResultError(f"Unexpected result payload: {value!r}")
