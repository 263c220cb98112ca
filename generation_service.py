"""
Generative text provider for the story engine.
Defines the provider interface the engine depends on and a Google Gemini
implementation with retries, rate limiting and optional response caching.
"""

import asyncio
import hashlib
import logging
import re
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, Optional, Protocol

import google.generativeai as genai

from config_manager import ApiConfig
from data_models import ImaginatorError

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 60.0
TOKENS_PER_WORD = 1.3


class ProviderError(ImaginatorError):
    """Generation failed, timed out, or returned an unusable response"""
    pass


class RateLimitError(ProviderError):
    """The provider asked us to slow down"""
    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class QuotaExceededError(ProviderError):
    """The account has no quota left; retrying will not help"""
    pass


class InvalidRequestError(ProviderError):
    """The provider rejected the prompt or its parameters"""
    pass


NON_RETRYABLE = (QuotaExceededError, InvalidRequestError)


class RetryStrategy(Enum):
    EXPONENTIAL_BACKOFF = "exponential"
    LINEAR_BACKOFF = "linear"
    FIXED_DELAY = "fixed"


@dataclass
class PromptSpec:
    """A structured generation request"""
    prompt: str
    max_tokens: int = 4000
    temperature: Optional[float] = None
    expect_json: bool = False
    use_cache: bool = True

    @property
    def cache_key(self) -> str:
        """Cache key derived from the request parameters"""
        raw = f"{self.prompt}:{self.max_tokens}:{self.temperature}:{self.expect_json}"
        return hashlib.sha256(raw.encode()).hexdigest()[:16]


@dataclass
class GenerationResponse:
    """Generated text with bookkeeping about how it was produced"""
    content: str
    tokens_used: int = 0
    cached: bool = False
    generation_time: float = 0.0
    model_used: str = ""
    attempts: int = 1


class TextProvider(Protocol):
    """Anything that turns a prompt into text; may raise ProviderError"""

    async def generate(self, spec: PromptSpec) -> str:
        ...


def classify_error(error: Exception) -> ProviderError:
    """Map SDK and transport failures onto provider error types"""
    if isinstance(error, ProviderError):
        return error

    message = str(error)
    lowered = message.lower()
    if "quota" in lowered or "limit" in lowered:
        if "rate" in lowered:
            match = re.search(r"retry.*?(\d+)", message, re.IGNORECASE)
            return RateLimitError(message, int(match.group(1)) if match else None)
        return QuotaExceededError(message)
    if "invalid" in lowered or "bad request" in lowered:
        return InvalidRequestError(message)
    return ProviderError(message)


@dataclass
class RetryPolicy:
    """How many times to retry and how long to wait in between"""
    max_retries: int = 3
    base_delay: float = 2.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF

    def delay(self, attempt: int, error: Optional[ProviderError] = None) -> float:
        """Seconds to wait after a failed attempt (0-based)"""
        if self.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            wait = self.base_delay * (2 ** attempt)
        elif self.strategy == RetryStrategy.LINEAR_BACKOFF:
            wait = self.base_delay * (attempt + 1)
        else:
            wait = self.base_delay
        if isinstance(error, RateLimitError) and error.retry_after:
            wait = max(wait, error.retry_after)
        return wait


class RateLimiter:
    """Minimum spacing between calls plus a per-minute request ceiling"""

    def __init__(self, min_interval: float, per_minute: int):
        self.min_interval = min_interval
        self.per_minute = per_minute
        self._sent: Deque[float] = deque()
        self._last = 0.0

    async def acquire(self):
        now = time.monotonic()
        while self._sent and self._sent[0] <= now - RATE_WINDOW_SECONDS:
            self._sent.popleft()

        if len(self._sent) >= self.per_minute:
            wait = RATE_WINDOW_SECONDS - (now - self._sent[0])
            if wait > 0:
                logger.warning(f"Request ceiling reached, waiting {wait:.2f}s")
                await asyncio.sleep(wait)
                now = time.monotonic()

        gap = now - self._last
        if self._last and gap < self.min_interval:
            await asyncio.sleep(self.min_interval - gap)
            now = time.monotonic()

        self._sent.append(now)
        self._last = now


class ResponseCache:
    """Prompt-keyed text cache with a TTL, trimmed least-recently-used first"""

    def __init__(self, max_size: int = 1000, ttl: float = 3600):
        self.max_size = max_size
        self.ttl = ttl
        # key -> [text, stored_at, last_used]
        self._entries: Dict[str, list] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = time.time()
        if now - entry[1] > self.ttl:
            del self._entries[key]
            return None
        entry[2] = now
        return entry[0]

    def put(self, key: str, text: str):
        if len(self._entries) >= self.max_size:
            by_age = sorted(self._entries, key=lambda k: self._entries[k][2])
            for stale in by_age[:max(1, len(by_age) // 10)]:
                del self._entries[stale]
        now = time.time()
        self._entries[key] = [text, now, now]

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count


class GenerationService:
    """Gemini-backed text provider"""

    def __init__(self, api_key: str, api_config: Optional[ApiConfig] = None):
        self.config = api_config or ApiConfig()
        self.retry_policy = RetryPolicy(
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_delay,
            strategy=RetryStrategy(self.config.retry_strategy),
        )
        self.rate_limiter = RateLimiter(self.config.rate_limit_delay, self.config.max_requests_per_minute)
        self.cache = ResponseCache(self.config.max_cache_size, self.config.cache_ttl)
        self._stats = {
            "total_requests": 0,
            "cache_hits": 0,
            "errors": 0,
            "retries": 0,
            "total_tokens": 0,
            "total_generation_time": 0.0,
        }

        try:
            genai.configure(api_key=api_key)
            self.model = genai.GenerativeModel(self.config.model)
        except Exception as e:
            raise ProviderError(f"Failed to initialize Gemini API: {e}") from e
        logger.info(f"Gemini provider ready with model {self.config.model}")

    async def generate(self, spec: PromptSpec) -> str:
        """Generate text for a prompt spec"""
        response = await self.generate_content(spec)
        return response.content

    async def generate_content(self, spec: PromptSpec) -> GenerationResponse:
        """Generate text, serving from cache when allowed and retrying transient failures"""
        self._stats["total_requests"] += 1
        cacheable = self.config.enable_cache and spec.use_cache

        if cacheable:
            hit = self.cache.get(spec.cache_key)
            if hit is not None:
                self._stats["cache_hits"] += 1
                logger.debug(f"Serving cached response for {spec.cache_key}")
                return GenerationResponse(content=hit, cached=True, model_used=self.config.model)

        attempt = 0
        while True:
            started = time.time()
            try:
                await self.rate_limiter.acquire()
                text = await self._call_model(spec)
            except Exception as e:
                error = classify_error(e)
                self._stats["errors"] += 1
                if isinstance(error, NON_RETRYABLE) or attempt >= self.retry_policy.max_retries:
                    logger.error(f"Generation failed after {attempt + 1} attempt(s): {error}")
                    if error is e:
                        raise
                    raise error from e
                wait = self.retry_policy.delay(attempt, error)
                self._stats["retries"] += 1
                attempt += 1
                logger.warning(f"Generation attempt {attempt} failed: {error}. Retrying in {wait:.2f}s")
                await asyncio.sleep(wait)
                continue

            elapsed = time.time() - started
            tokens = int(len(text.split()) * TOKENS_PER_WORD)
            self._stats["total_generation_time"] += elapsed
            self._stats["total_tokens"] += tokens
            if cacheable:
                self.cache.put(spec.cache_key, text)
            logger.debug(f"Generated {len(text)} characters in {elapsed:.2f}s")
            return GenerationResponse(
                content=text,
                tokens_used=tokens,
                generation_time=elapsed,
                model_used=self.config.model,
                attempts=attempt + 1,
            )

    async def _call_model(self, spec: PromptSpec) -> str:
        """Run the blocking SDK call in a worker thread, bounded by the API timeout"""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self._sync_generate_content, spec),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderError(f"Gemini call exceeded {self.config.timeout}s")

    def _sync_generate_content(self, spec: PromptSpec) -> str:
        temperature = self.config.temperature if spec.temperature is None else spec.temperature
        response = self.model.generate_content(
            spec.prompt,
            generation_config=genai.types.GenerationConfig(
                max_output_tokens=spec.max_tokens,
                temperature=temperature,
                response_mime_type="application/json" if spec.expect_json else "text/plain",
            ),
        )
        if not response or not response.parts:
            raise ProviderError("Gemini returned an empty response")
        return response.text

    def clear_cache(self):
        logger.info(f"Dropped {self.cache.clear()} cached responses")

    def get_statistics(self) -> Dict[str, Any]:
        total = self._stats["total_requests"]
        return {
            **self._stats,
            "cache_size": len(self.cache),
            "average_generation_time": self._stats["total_generation_time"] / total if total else 0,
            "error_rate": self._stats["errors"] / total if total else 0,
            "model": self.config.model,
            "retry_strategy": self.retry_policy.strategy.value,
        }
