import os
from types import SimpleNamespace
from unittest.mock import MagicMock

from result_archiver import ResultArchiver
from result_store import ResultStore


def deliver(archiver, correlation_id, body, delivery_tag=7):
    channel = MagicMock()
    method = SimpleNamespace(delivery_tag=delivery_tag)
    properties = SimpleNamespace(correlation_id=correlation_id)
    archiver.on_message(channel, method, properties, body)
    return channel


def test_writes_payload_under_correlation_id(store):
    channel = deliver(ResultArchiver(store), "id-1", b"15")

    assert store.read("id-1") == b"15"
    assert os.path.exists(os.path.join(store.path_prefix, "id-1"))
    channel.basic_ack.assert_called_once_with(delivery_tag=7)


def test_overwrites_previous_result(store):
    archiver = ResultArchiver(store)
    deliver(archiver, "id-1", b"1")
    deliver(archiver, "id-1", b"2")

    assert store.read("id-1") == b"2"


def test_error_markers_are_stored_as_is(store):
    deliver(ResultArchiver(store), "id-2", b'{"error": "Not a collection: 5"}')

    assert store.read("id-2") == b'{"error": "Not a collection: 5"}'


def test_message_without_correlation_id_is_rejected(store):
    channel = deliver(ResultArchiver(store), None, b"15")

    channel.basic_ack.assert_not_called()
    channel.basic_nack.assert_called_once_with(delivery_tag=7, requeue=False)


def test_message_with_path_like_id_is_rejected(tmp_path):
    store = ResultStore(str(tmp_path / "results"))
    channel = deliver(ResultArchiver(store), "../escape", b"15")

    channel.basic_nack.assert_called_once_with(delivery_tag=7, requeue=False)
    assert not (tmp_path / "escape").exists()


def test_write_failure_propagates_without_ack():
    store = MagicMock()
    store.write.side_effect = OSError("disk full")
    channel = MagicMock()

    try:
        ResultArchiver(store).on_message(
            channel, SimpleNamespace(delivery_tag=1), SimpleNamespace(correlation_id="id"), b"1"
        )
    except OSError:
        pass
    else:
        raise AssertionError("write failure was swallowed")
    channel.basic_ack.assert_not_called()
