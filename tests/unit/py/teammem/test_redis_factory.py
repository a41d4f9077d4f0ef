"""Tests for the retrying Redis client factory."""

from unittest.mock import MagicMock, patch

import pytest
import redis

from teammem.config import StorageConfig
from teammem.errors import BackendUnavailable
from teammem.redis_factory import RedisStartupError, backoff_delay, create_redis_client, redis_client_for


class TestCreateRedisClient:

    @pytest.mark.p0
    def test_returns_client_after_transient_failures(self):
        client = MagicMock()
        client.ping.side_effect = [redis.ConnectionError("refused"), redis.TimeoutError("slow"), True]

        with patch("teammem.redis_factory.redis.from_url", return_value=client) as from_url, \
                patch("teammem.redis_factory.time.sleep") as sleep:
            result = create_redis_client("redis://localhost:6379", max_retries=5)

        assert result is client
        assert client.ping.call_count == 3
        assert sleep.call_count == 2
        from_url.assert_called_with("redis://localhost:6379", socket_timeout=None,
                                    socket_connect_timeout=None)

    @pytest.mark.p0
    def test_raises_after_max_retries(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")

        with patch("teammem.redis_factory.redis.from_url", return_value=client), \
                patch("teammem.redis_factory.time.sleep") as sleep:
            with pytest.raises(RedisStartupError) as exc_info:
                create_redis_client("redis://admin:s3cret@db:6379", max_retries=3)

        assert client.ping.call_count == 3
        assert sleep.call_count == 2
        assert "s3cret" not in str(exc_info.value)
        assert "3 attempts" in str(exc_info.value)

    @pytest.mark.p1
    def test_backoff_is_capped(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")

        with patch("teammem.redis_factory.redis.from_url", return_value=client), \
                patch("teammem.redis_factory.time.sleep") as sleep:
            with pytest.raises(RedisStartupError):
                create_redis_client("redis://localhost:6379", max_retries=6,
                                    base_delay=1.0, max_delay=4.0)

        delays = [call.args[0] for call in sleep.call_args_list]
        assert len(delays) == 5
        assert all(d <= 4.0 * 1.25 for d in delays)
        assert delays[0] <= 1.25

    @pytest.mark.p1
    def test_startup_error_is_a_backend_outage(self):
        assert issubclass(RedisStartupError, BackendUnavailable)
        assert RedisStartupError("down").backend == "cache"


class TestBackoffDelay:

    @pytest.mark.p2
    def test_doubles_until_capped(self):
        with patch("teammem.redis_factory.random.random", return_value=0.5):
            delays = [backoff_delay(attempt, 1.0, 4.0) for attempt in range(5)]

        assert delays == [1.0, 2.0, 4.0, 4.0, 4.0]


class TestRedisClientFor:

    @pytest.mark.p1
    def test_storage_timeout_bounds_connect_and_commands(self):
        storage = StorageConfig(redis_url="redis://cache:6379/2", timeout=0.5, redis_retries=2)
        client = MagicMock()

        with patch("teammem.redis_factory.redis.from_url", return_value=client) as from_url:
            assert redis_client_for(storage) is client

        from_url.assert_called_once_with("redis://cache:6379/2", socket_timeout=0.5,
                                         socket_connect_timeout=0.5)

    @pytest.mark.p1
    def test_storage_retries_limit_attempts(self):
        storage = StorageConfig(redis_url="redis://cache:6379", redis_retries=2)
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")

        with patch("teammem.redis_factory.redis.from_url", return_value=client), \
                patch("teammem.redis_factory.time.sleep"):
            with pytest.raises(RedisStartupError):
                redis_client_for(storage)

        assert client.ping.call_count == 2

    @pytest.mark.p2
    def test_retries_must_be_positive(self):
        with pytest.raises(ValueError):
            StorageConfig(redis_retries=0)
