#!/usr/bin/env python3
"""
Task Client - submits a list of numbers to the task queue service and waits for the sum

Usage: python task_client.py --url http://localhost:8080 1 2 3 4 5
"""

import argparse
import json
import logging
import sys
import time
from typing import Optional, Tuple

import requests

from config import LOG_FORMAT

logger = logging.getLogger('task_client')


class ComputationFailed(Exception):
    """The service reported that the computation could not be carried out."""


def submit_numbers(base_url: str, numbers, timeout: float = 10.0) -> str:
    """POST the numbers to /compute and return the result location."""
    response = requests.post(f"{base_url}/compute", json=list(numbers), timeout=timeout)
    response.raise_for_status()
    location = response.text.strip()
    logger.info(f"Submitted {numbers}, result will appear at {location}")
    return location


def fetch_result(base_url: str, location: str, timeout: float = 10.0) -> Tuple[bool, Optional[float]]:
    """
    Fetch a result once.

    Returns:
        (True, value) when the result is available, (False, None) while pending
    """
    response = requests.get(f"{base_url}{location}", timeout=timeout)
    if response.status_code == 404:
        return False, None
    if response.status_code == 422:
        raise ComputationFailed(response.text)
    response.raise_for_status()
    return True, json.loads(response.text)


def wait_for_result(base_url: str, location: str, poll_interval: float = 1.0, timeout: float = 300.0):
    """Poll a result location until the result is available or `timeout` seconds pass."""
    deadline = time.monotonic() + timeout
    while True:
        done, value = fetch_result(base_url, location)
        if done:
            return value
        if time.monotonic() >= deadline:
            raise TimeoutError(f"No result at {location} after {timeout} seconds")
        time.sleep(poll_interval)


def parse_number(text: str):
    try:
        return int(text)
    except ValueError:
        return float(text)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Sum numbers through the task queue service")
    parser.add_argument("numbers", nargs="*", type=parse_number, help="Numbers to sum")
    parser.add_argument("--url", default="http://localhost:8080", help="Base URL of the service")
    parser.add_argument("--poll-interval", type=float, default=1.0)
    parser.add_argument("--timeout", type=float, default=300.0)
    parser.add_argument("--no-wait", action="store_true", help="Print the result location and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    try:
        location = submit_numbers(args.url, args.numbers)
        if args.no_wait:
            print(location)
            return 0
        print(wait_for_result(args.url, location, args.poll_interval, args.timeout))
        return 0
    except ComputationFailed as e:
        logger.error(f"Computation failed: {e}")
    except (requests.RequestException, TimeoutError) as e:
        logger.error(f"Error talking to the task queue service: {e}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
