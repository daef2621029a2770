"""Tests for ValkeyClient - the redis-py wrapper behind exchange codes and throttling."""

from unittest.mock import Mock, patch

import pytest
import redis

from clients.valkey_client import ValkeyClient


@pytest.fixture
def redis_mock():
    """The redis-py client that ValkeyClient wraps."""
    with patch("clients.valkey_client.redis.from_url") as from_url:
        client = Mock()
        client.ping.return_value = True
        from_url.return_value = client
        yield client


@pytest.fixture
def client(redis_mock) -> ValkeyClient:
    return ValkeyClient("redis://localhost:6379/0")


class TestValkeyClientInit:
    """Connection initialization."""

    def test_connects_with_decoded_responses(self):
        with patch("clients.valkey_client.redis.from_url") as from_url:
            ValkeyClient("redis://valkey:6379/1")
        from_url.assert_called_once_with("redis://valkey:6379/1", decode_responses=True)

    def test_pings_on_connect(self, client, redis_mock):
        redis_mock.ping.assert_called_once()

    def test_unreachable_server_fails_fast(self, redis_mock):
        redis_mock.ping.side_effect = redis.ConnectionError("refused")
        with pytest.raises(redis.ConnectionError):
            ValkeyClient("redis://localhost:6379/0")


class TestBasicOperations:
    """Get/set/delete operations."""

    def test_set_without_expiry(self, client, redis_mock):
        client.set("k", "v")
        redis_mock.set.assert_called_once_with("k", "v")
        redis_mock.setex.assert_not_called()

    def test_set_with_expiry_uses_setex(self, client, redis_mock):
        client.set("k", "v", expire_seconds=60)
        redis_mock.setex.assert_called_once_with("k", 60, "v")

    def test_getdel_is_single_command(self, client, redis_mock):
        redis_mock.getdel.return_value = "once"
        assert client.getdel("k") == "once"
        redis_mock.getdel.assert_called_once_with("k")
        redis_mock.get.assert_not_called()

    def test_delete_reports_whether_key_existed(self, client, redis_mock):
        redis_mock.delete.return_value = 1
        assert client.delete("k") is True
        redis_mock.delete.return_value = 0
        assert client.delete("k") is False


class TestExpiration:
    """TTL functionality."""

    def test_expire_existing_key(self, client, redis_mock):
        redis_mock.expire.return_value = True
        assert client.expire("k", 60) is True
        redis_mock.expire.assert_called_once_with("k", 60)

    def test_expire_missing_key(self, client, redis_mock):
        redis_mock.expire.return_value = False
        assert client.expire("k", 60) is False

    def test_ttl_passthrough(self, client, redis_mock):
        redis_mock.ttl.return_value = -2
        assert client.ttl("missing") == -2


class TestCounter:
    """Increment operations."""

    def test_incr_returns_new_value(self, client, redis_mock):
        redis_mock.incr.return_value = 3
        assert client.incr("counter") == 3


class TestJsonHelpers:
    """JSON serialization helpers."""

    def test_set_json_serializes(self, client, redis_mock):
        client.set_json("k", {"user_id": "123"}, expire_seconds=30)
        redis_mock.setex.assert_called_once_with("k", 30, '{"user_id": "123"}')

    def test_getdel_json_decodes(self, client, redis_mock):
        redis_mock.getdel.return_value = '{"session_id": "abc", "is_new_user": false}'
        assert client.getdel_json("k") == {"session_id": "abc", "is_new_user": False}

    def test_getdel_json_missing_returns_none(self, client, redis_mock):
        redis_mock.getdel.return_value = None
        assert client.getdel_json("k") is None

    def test_getdel_json_invalid_raises(self, client, redis_mock):
        redis_mock.getdel.return_value = "not valid json {"
        with pytest.raises(ValueError, match="Invalid JSON"):
            client.getdel_json("k")


class TestClose:
    def test_close_closes_connection(self, client, redis_mock):
        client.close()
        redis_mock.close.assert_called_once()
