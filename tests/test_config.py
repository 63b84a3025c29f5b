"""Tests for configuration validation."""

import pytest

from conveyor import (
    BackoffConfig,
    ConsumerSettings,
    CountLimitation,
    DeadLetterSettings,
    PublisherSettings,
    ReceiveSettings,
    Unlimited,
)


class TestConsumerSettings:
    def test_defaults(self) -> None:
        settings = ConsumerSettings(queue_name="orders")
        assert settings.topics == []
        assert settings.parallelism == 1
        assert settings.kms_key_alias is None
        assert isinstance(settings.limitation, Unlimited)
        assert settings.receive.wait_time_s == 20
        assert settings.receive.max_messages == 10
        assert settings.reject_visibility_timeout_s == 0
        assert settings.dead_letter is None
        assert settings.create_queue_if_missing

    def test_empty_queue_name_rejected(self) -> None:
        with pytest.raises(ValueError, match="queue_name"):
            ConsumerSettings(queue_name="")

    def test_parallelism_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="parallelism"):
            ConsumerSettings(queue_name="orders", parallelism=0)

    def test_reject_visibility_timeout_bounds(self) -> None:
        with pytest.raises(ValueError, match="reject_visibility_timeout_s"):
            ConsumerSettings(queue_name="orders", reject_visibility_timeout_s=-1)

    def test_limitation_is_not_shared(self) -> None:
        """Each settings object gets its own default limitation."""
        a = ConsumerSettings(queue_name="a")
        b = ConsumerSettings(queue_name="b")
        assert a.limitation is not b.limitation

    def test_custom_limitation(self) -> None:
        settings = ConsumerSettings(queue_name="orders", limitation=CountLimitation(5))
        assert settings.limitation.should_stop() is False


class TestReceiveSettings:
    @pytest.mark.parametrize("wait", [-1, 21])
    def test_wait_time_bounds(self, wait: int) -> None:
        with pytest.raises(ValueError, match="wait_time_s"):
            ReceiveSettings(wait_time_s=wait)

    @pytest.mark.parametrize("count", [0, 11])
    def test_max_messages_bounds(self, count: int) -> None:
        with pytest.raises(ValueError, match="max_messages"):
            ReceiveSettings(max_messages=count)

    def test_visibility_timeout_bounds(self) -> None:
        with pytest.raises(ValueError, match="visibility_timeout_s"):
            ReceiveSettings(visibility_timeout_s=43201)
        assert ReceiveSettings(visibility_timeout_s=0).visibility_timeout_s == 0


class TestPublisherSettings:
    def test_defaults(self) -> None:
        settings = PublisherSettings()
        assert settings.max_batch_size == 10
        assert settings.concurrency == 4
        assert settings.max_retries == 3

    def test_batch_size_capped_by_service_limit(self) -> None:
        with pytest.raises(ValueError, match="max_batch_size"):
            PublisherSettings(max_batch_size=11)

    def test_concurrency_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="concurrency"):
            PublisherSettings(concurrency=0)

    def test_zero_retries_allowed(self) -> None:
        assert PublisherSettings(max_retries=0).max_retries == 0


def test_backoff_config_validation() -> None:
    with pytest.raises(ValueError, match="initial_delay_s must be <="):
        BackoffConfig(initial_delay_s=10.0, max_delay_s=1.0)
    with pytest.raises(ValueError, match="multiplier"):
        BackoffConfig(multiplier=0.5)
    with pytest.raises(ValueError, match="jitter"):
        BackoffConfig(jitter=1.5)


def test_dead_letter_max_receive_count() -> None:
    with pytest.raises(ValueError, match="max_receive_count"):
        DeadLetterSettings(queue_name="orders-dlq", max_receive_count=0)
