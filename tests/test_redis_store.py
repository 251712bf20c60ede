"""Unit tests for the Redis record store against a mocked client."""

import json
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from parentauth.storage.common import Namespace
from parentauth.storage.errors import StorageError
from parentauth.storage.redis_store import RedisStore


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def store(client):
    return RedisStore("redis://localhost:6379/0", key_prefix="pa", client=client)


def test_get_reads_namespace_hash(store, client):
    client.hget.return_value = json.dumps({"email": "a@example.com"})

    assert store.get(Namespace.ACCOUNTS, "a@example.com") == {"email": "a@example.com"}
    client.hget.assert_called_once_with("pa:accounts", "a@example.com")


def test_get_missing(store, client):
    client.hget.return_value = None

    assert store.get(Namespace.SESSIONS, "access_x") is None


def test_get_all_decodes_byte_keys(store, client):
    client.hgetall.return_value = {b"k1": b'{"v": 1}', "k2": '{"v": 2}'}

    assert store.get_all(Namespace.EVENTS) == {"k1": {"v": 1}, "k2": {"v": 2}}
    client.hgetall.assert_called_once_with("pa:events")


def test_set_encodes_json(store, client):
    store.set(Namespace.OTP_RECORDS, "a@example.com", {"code": "123456"})

    client.hset.assert_called_once_with(
        "pa:otp_records", "a@example.com", '{"code":"123456"}'
    )


def test_delete(store, client):
    store.delete(Namespace.SESSIONS, "access_x")

    client.hdel.assert_called_once_with("pa:sessions", "access_x")


def test_write_batch_uses_transaction(store, client):
    pipe = client.pipeline.return_value

    store.write_batch(
        Namespace.SESSIONS,
        sets={"access_new": {"v": 1}},
        deletes=["access_old", "refresh:refresh_old"],
    )

    client.pipeline.assert_called_once_with(transaction=True)
    pipe.hdel.assert_called_once_with("pa:sessions", "access_old", "refresh:refresh_old")
    pipe.hset.assert_called_once_with("pa:sessions", mapping={"access_new": '{"v":1}'})
    pipe.execute.assert_called_once()


def test_empty_batch_skips_redis(store, client):
    store.write_batch(Namespace.SESSIONS)

    client.pipeline.assert_not_called()


def test_redis_errors_become_storage_errors(store, client):
    client.hget.side_effect = RedisConnectionError("Connection refused")

    with pytest.raises(StorageError) as exc_info:
        store.get(Namespace.ACCOUNTS, "a@example.com")

    assert exc_info.value.operation == "get"
    assert exc_info.value.namespace == "accounts"


def test_failed_batch_raises(store, client):
    client.pipeline.return_value.execute.side_effect = RedisConnectionError("down")

    with pytest.raises(StorageError):
        store.write_batch(Namespace.SESSIONS, deletes=["access_x"])


def test_corrupt_value_raises(store, client):
    client.hget.return_value = "not json"

    with pytest.raises(StorageError):
        store.get(Namespace.ACCOUNTS, "a@example.com")


def test_verify_connection(store, client):
    store.verify_connection()
    client.ping.assert_called_once()

    client.ping.side_effect = RedisConnectionError("down")
    with pytest.raises(StorageError):
        store.verify_connection()


def test_delete_if_watches_and_deletes(store, client):
    pipe = client.pipeline.return_value
    pipe.hget.return_value = json.dumps({"code": "111111"})

    assert store.delete_if(Namespace.OTP_RECORDS, "a@example.com", lambda data: True) is True

    pipe.watch.assert_called_once_with("pa:otp_records")
    pipe.multi.assert_called_once()
    pipe.hdel.assert_called_once_with("pa:otp_records", "a@example.com")
    pipe.execute.assert_called_once()
    pipe.reset.assert_called_once()


def test_delete_if_leaves_non_matching_value(store, client):
    pipe = client.pipeline.return_value
    pipe.hget.return_value = json.dumps({"code": "222222"})

    deleted = store.delete_if(
        Namespace.OTP_RECORDS, "a@example.com", lambda data: data["code"] == "111111"
    )

    assert deleted is False
    pipe.multi.assert_not_called()
    pipe.hdel.assert_not_called()
    pipe.reset.assert_called_once()


def test_delete_if_concurrent_write_skips_key(store, client):
    pipe = client.pipeline.return_value
    pipe.hget.return_value = json.dumps({"code": "111111"})
    pipe.execute.side_effect = WatchError("watched key changed")

    assert store.delete_if(Namespace.OTP_RECORDS, "a@example.com", lambda data: True) is False


def test_delete_if_redis_failure(store, client):
    client.pipeline.return_value.watch.side_effect = RedisConnectionError("down")

    with pytest.raises(StorageError) as exc_info:
        store.delete_if(Namespace.OTP_RECORDS, "a@example.com", lambda data: True)

    assert exc_info.value.operation == "delete_if"
