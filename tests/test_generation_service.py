"""
Tests for the Gemini-backed text provider.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config_manager import ApiConfig
from generation_service import (
    GenerationService,
    InvalidRequestError,
    PromptSpec,
    ProviderError,
    QuotaExceededError,
    RateLimiter,
    RateLimitError,
    ResponseCache,
    RetryPolicy,
    RetryStrategy,
    classify_error,
)


@pytest.fixture
def api_config():
    return ApiConfig(model="gemini-test", rate_limit_delay=0, retry_delay=0, max_retries=2)


@pytest.fixture
def service(api_config):
    """Create a service with the Gemini SDK patched out"""
    with patch('google.generativeai.configure'):
        with patch('google.generativeai.GenerativeModel'):
            return GenerationService("test_key", api_config)


class TestGenerationService:
    """Test generation, caching and retries"""

    @pytest.mark.asyncio
    async def test_generate_success(self, service):
        service._sync_generate_content = MagicMock(return_value="Generated content")

        text = await service.generate(PromptSpec("Write a scene"))

        assert text == "Generated content"
        assert service.get_statistics()["total_requests"] == 1

    @pytest.mark.asyncio
    async def test_cached_response(self, service):
        service._sync_generate_content = MagicMock(return_value="Generated content")
        spec = PromptSpec("Write a scene")

        await service.generate_content(spec)
        response = await service.generate_content(spec)

        assert response.cached
        assert service._sync_generate_content.call_count == 1
        assert service.get_statistics()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_cache_can_be_bypassed(self, service):
        service._sync_generate_content = MagicMock(side_effect=["first", "second"])
        spec = PromptSpec("Export the story", use_cache=False)

        assert await service.generate(spec) == "first"
        assert await service.generate(spec) == "second"
        assert service.get_statistics()["cache_size"] == 0

    @pytest.mark.asyncio
    async def test_retry_then_success(self, service):
        service._sync_generate_content = MagicMock(side_effect=[Exception("connection reset"), "Recovered"])

        response = await service.generate_content(PromptSpec("Retry me"))

        assert response.content == "Recovered"
        assert response.attempts == 2
        assert service.get_statistics()["retries"] == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, service):
        service._sync_generate_content = MagicMock(side_effect=Exception("server error"))

        with pytest.raises(ProviderError, match="server error"):
            await service.generate(PromptSpec("Always fails"))
        assert service._sync_generate_content.call_count == 3

    @pytest.mark.asyncio
    async def test_quota_error_not_retried(self, service):
        service._sync_generate_content = MagicMock(side_effect=Exception("Quota exceeded for project"))

        with pytest.raises(QuotaExceededError):
            await service.generate(PromptSpec("No quota"))
        assert service._sync_generate_content.call_count == 1

    @pytest.mark.asyncio
    async def test_empty_sdk_response(self, service):
        service.model.generate_content.return_value = MagicMock(parts=[])

        with pytest.raises(ProviderError, match="empty response"):
            await service.generate(PromptSpec("Nothing back"))

    @pytest.mark.asyncio
    async def test_json_requests_ask_for_json(self, service):
        service.model.generate_content.return_value = MagicMock(parts=["p"], text='{"ok": true}')

        with patch('google.generativeai.types.GenerationConfig') as generation_config:
            await service.generate(PromptSpec("Give JSON", expect_json=True, max_tokens=50))

        kwargs = generation_config.call_args.kwargs
        assert kwargs["response_mime_type"] == "application/json"
        assert kwargs["max_output_tokens"] == 50
        assert kwargs["temperature"] == 0.7

    def test_init_failure(self, api_config):
        with patch('google.generativeai.configure', side_effect=RuntimeError("bad key")):
            with pytest.raises(ProviderError, match="Failed to initialize"):
                GenerationService("test_key", api_config)

    def test_clear_cache(self, service):
        service.cache.put("key", "value")
        service.clear_cache()
        assert service.get_statistics()["cache_size"] == 0


class TestErrorClassification:
    """Test mapping of SDK errors"""

    def test_rate_limit(self):
        error = classify_error(Exception("Rate limit hit, retry after 7 seconds"))
        assert isinstance(error, RateLimitError)
        assert error.retry_after == 7

    def test_other_kinds(self):
        assert isinstance(classify_error(Exception("Quota exhausted")), QuotaExceededError)
        assert isinstance(classify_error(Exception("Invalid argument")), InvalidRequestError)
        assert type(classify_error(Exception("boom"))) is ProviderError

    def test_provider_errors_pass_through(self):
        error = ProviderError("already classified")
        assert classify_error(error) is error


class TestRetryPolicy:
    """Test backoff schedules"""

    @pytest.mark.parametrize("strategy,expected", [
        (RetryStrategy.EXPONENTIAL_BACKOFF, [2.0, 4.0, 8.0]),
        (RetryStrategy.LINEAR_BACKOFF, [2.0, 4.0, 6.0]),
        (RetryStrategy.FIXED_DELAY, [2.0, 2.0, 2.0]),
    ])
    def test_delays(self, strategy, expected):
        policy = RetryPolicy(base_delay=2.0, strategy=strategy)
        assert [policy.delay(i) for i in range(3)] == expected

    def test_retry_after_is_respected(self):
        policy = RetryPolicy(base_delay=1.0)
        assert policy.delay(0, RateLimitError("slow down", retry_after=30)) == 30


class TestRateLimiterAndCache:
    """Test request pacing and the response cache"""

    @pytest.mark.asyncio
    async def test_ceiling_waits_for_window(self):
        limiter = RateLimiter(min_interval=0, per_minute=1)
        with patch("generation_service.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await limiter.acquire()
            await limiter.acquire()
        assert sleep.call_count == 1
        assert 0 < sleep.call_args.args[0] <= 60

    def test_cache_expiry(self):
        cache = ResponseCache(ttl=-1)
        cache.put("k", "v")
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_cache_trims_when_full(self):
        cache = ResponseCache(max_size=2)
        cache.put("a", "1")
        cache.put("b", "2")
        cache.put("c", "3")
        assert len(cache) == 2
        assert cache.get("c") == "3"

    def test_prompt_spec_cache_key(self):
        assert PromptSpec("a").cache_key == PromptSpec("a").cache_key
        assert PromptSpec("a").cache_key != PromptSpec("a", expect_json=True).cache_key
