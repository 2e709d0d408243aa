"""
Unit tests for credential rotation and the retry controller.
"""
import asyncio

import pytest

from narrative.ai_pipeline.errors import (
    NoCredentialsError, ProviderAuthFailure, ProviderCallFailed, ProviderError,
    ProviderRateLimited, ProviderUnavailable,
)
from narrative.ai_pipeline.key_rotation import KeyPool, KeyRotationController, mask_key
from narrative.config import GEMINI_PROVIDER


class TestKeyPool:
    """Tests for key selection and quarantine."""

    def test_rotates_in_order(self):
        """Keys are handed out round robin."""
        pool = KeyPool("gemini", ["k1", "k2", "k3"])
        assert [pool.next_key() for _ in range(4)] == ["k1", "k2", "k3", "k1"]

    def test_key_skipped_after_five_errors(self):
        """A key with five consecutive errors is passed over."""
        pool = KeyPool("gemini", ["k1", "k2"])
        for _ in range(5):
            pool.record_error("k1")
        assert [pool.next_key() for _ in range(3)] == ["k2", "k2", "k2"]

    def test_success_resets_error_count(self):
        """A success brings a quarantined key back."""
        pool = KeyPool("gemini", ["k1", "k2"])
        for _ in range(5):
            pool.record_error("k1")
        pool.record_success("k1")
        assert pool.error_count["k1"] == 0
        assert pool.usage_count["k1"] == 1
        assert "k1" in [pool.next_key() for _ in range(2)]

    def test_all_keys_exhausted_resets_everything(self):
        """When every key is over the threshold all counters reset and the first key is used."""
        pool = KeyPool("gemini", ["k1", "k2", "k3"])
        pool.cursor = 2
        for key in pool.keys:
            for _ in range(5):
                pool.record_error(key)

        assert pool.next_key() == "k1"
        assert all(count == 0 for count in pool.error_count.values())
        assert pool.next_key() == "k2"

    def test_empty_pool_raises(self):
        with pytest.raises(NoCredentialsError):
            KeyPool("gemini", []).next_key()

    def test_statistics_mask_keys(self):
        """Statistics never contain a full credential."""
        pool = KeyPool("gemini", ["secret-key-abcd"])
        pool.record_error("secret-key-abcd")
        stats = pool.statistics()

        assert stats["total_keys"] == 1
        assert stats["key_status"][0]["key_last4"] == "...abcd"
        assert stats["key_status"][0]["consecutive_errors"] == 1
        assert "secret-key-abcd" not in str(stats)


def test_mask_key():
    assert mask_key("abcdefgh") == "...efgh"
    assert mask_key("") == "N/A"


class TestExecuteWithRetry:
    """Tests for execute_with_retry."""

    def test_success_on_first_attempt(self, controller, recording_sleep):
        async def operation(key):
            return f"ok with {key}"

        result = asyncio.run(controller.execute_with_retry(GEMINI_PROVIDER, operation))

        assert result == "ok with gemini-key-0001"
        assert recording_sleep.delays == []
        assert controller.pool(GEMINI_PROVIDER).usage_count["gemini-key-0001"] == 1

    def test_rate_limit_retried_with_backoff(self, controller, recording_sleep):
        """429 then 503 then success: two waits of 2^attempt seconds, next key each time."""
        failures = [ProviderRateLimited("slow down"), ProviderUnavailable("busy")]
        used = []

        async def operation(key):
            used.append(key)
            if failures:
                raise failures.pop(0)
            return "done"

        result = asyncio.run(controller.execute_with_retry(GEMINI_PROVIDER, operation))

        assert result == "done"
        assert recording_sleep.delays == [2, 4]
        assert used == ["gemini-key-0001", "gemini-key-0002", "gemini-key-0001"]

    def test_non_retriable_error_raises_immediately(self, controller, recording_sleep):
        """An auth failure is recorded against the key and not retried."""
        calls = []

        async def operation(key):
            calls.append(key)
            raise ProviderAuthFailure("bad key", 401)

        with pytest.raises(ProviderCallFailed) as exc_info:
            asyncio.run(controller.execute_with_retry(GEMINI_PROVIDER, operation, context="Some headline"))

        assert len(calls) == 1
        assert exc_info.value.attempts == 1
        assert exc_info.value.last_message == "bad key"
        assert exc_info.value.context == "Some headline"
        assert recording_sleep.delays == []
        assert controller.pool(GEMINI_PROVIDER).error_count["gemini-key-0001"] == 1

    def test_exhausted_attempts_raise_with_count(self, controller, recording_sleep):
        async def operation(key):
            raise ProviderRateLimited("still limited")

        with pytest.raises(ProviderCallFailed) as exc_info:
            asyncio.run(controller.execute_with_retry(GEMINI_PROVIDER, operation))

        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 429
        assert len(recording_sleep.delays) == 2

    def test_unexpected_exception_is_not_retried(self, controller):
        async def operation(key):
            raise ValueError("boom")

        with pytest.raises(ProviderCallFailed) as exc_info:
            asyncio.run(controller.execute_with_retry(GEMINI_PROVIDER, operation))
        assert exc_info.value.attempts == 1

    def test_context_truncated_to_sixty_chars(self, controller):
        async def operation(key):
            raise ProviderError("server error", 500)

        with pytest.raises(ProviderCallFailed) as exc_info:
            asyncio.run(controller.execute_with_retry(GEMINI_PROVIDER, operation, context="x" * 200))
        assert exc_info.value.context == "x" * 60

    def test_unknown_provider_raises(self, controller):
        async def operation(key):
            return key

        with pytest.raises(NoCredentialsError):
            asyncio.run(controller.execute_with_retry("missing", operation))

    def test_backoff_includes_jitter(self):
        controller = KeyRotationController({GEMINI_PROVIDER: ["k"]}, jitter=lambda: 0.5)
        assert controller.backoff_seconds(1) == 2.5
        assert controller.backoff_seconds(3) == 8.5

    def test_statistics_for_all_providers(self, controller):
        stats = controller.get_statistics()
        assert set(stats) == {"gemini", "gatekeeper"}
        assert stats["gemini"]["total_keys"] == 2
