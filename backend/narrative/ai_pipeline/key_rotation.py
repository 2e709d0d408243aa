"""
Narrative Key Rotation Module
Per-provider credential pools with rotation, quarantine and retry
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional

from narrative.ai_pipeline.errors import NoCredentialsError, ProviderCallFailed, ProviderError
from narrative.ai_pipeline.text_utils import truncate

logger = logging.getLogger(__name__)

MAX_ERRORS_PER_KEY = 5


def mask_key(key: str) -> str:
    return f"...{key[-4:]}" if key else "N/A"


class KeyPool:
    """Ordered credentials for one provider plus their usage and error counters"""

    def __init__(self, provider: str, keys: List[str], max_errors: int = MAX_ERRORS_PER_KEY):
        self.provider = provider
        self.keys = list(keys)
        self.max_errors = max_errors
        self.cursor = 0
        self.usage_count = {k: 0 for k in self.keys}
        self.error_count = {k: 0 for k in self.keys}

    def next_key(self) -> str:
        """
        Advance the cursor and return the first key under the error threshold.

        If a full cycle finds nothing usable every counter is reset and the
        first key is returned.
        """
        if not self.keys:
            raise NoCredentialsError(f"No {self.provider} API keys available.")

        num_keys = len(self.keys)
        for _ in range(num_keys):
            index = self.cursor
            key = self.keys[index]
            self.cursor = (self.cursor + 1) % num_keys

            errors = self.error_count.get(key, 0)
            if errors < self.max_errors:
                return key
            if errors == self.max_errors:
                logger.warning(
                    f"Temporarily skipping {self.provider} key {mask_key(key)} "
                    f"(index {index}) after {errors} errors"
                )

        logger.error(
            f"All {num_keys} {self.provider} keys hit the error threshold ({self.max_errors}). Resetting counts."
        )
        for k in self.keys:
            self.error_count[k] = 0
        self.cursor = 1 % num_keys
        return self.keys[0]

    def record_success(self, key: str):
        if key in self.usage_count:
            self.usage_count[key] += 1
            self.error_count[key] = 0

    def record_error(self, key: str):
        if key in self.error_count:
            self.error_count[key] += 1
            logger.warning(
                f"Error count for {self.provider} key {mask_key(key)} is now {self.error_count[key]}"
            )
        else:
            logger.warning(f"Tried to record error for unknown {self.provider} key {mask_key(key)}")

    def statistics(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "total_keys": len(self.keys),
            "current_index": self.cursor,
            "key_status": [
                {
                    "index": index,
                    "key_last4": mask_key(key),
                    "usage": self.usage_count.get(key, 0),
                    "consecutive_errors": self.error_count.get(key, 0),
                }
                for index, key in enumerate(self.keys)
            ],
        }


class KeyRotationController:
    """
    Runs provider calls with credential rotation and exponential backoff.

    Constructed once at startup from the configured pools and injected into
    every service that calls an external provider. Sleep and jitter are
    injectable so tests can run the retry path instantly.
    """

    def __init__(
        self,
        provider_keys: Dict[str, List[str]],
        max_attempts: int = 3,
        max_errors_per_key: int = MAX_ERRORS_PER_KEY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        self.pools = {
            provider: KeyPool(provider, keys, max_errors_per_key)
            for provider, keys in provider_keys.items()
        }
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._jitter = jitter

        for provider, pool in self.pools.items():
            if pool.keys:
                logger.info(f"Loaded {len(pool.keys)} {provider} API key(s)")
            else:
                logger.warning(f"No {provider} API keys found. Calls to {provider} will fail.")

    def pool(self, provider: str) -> KeyPool:
        if provider not in self.pools:
            raise NoCredentialsError(f"Unknown provider: {provider}")
        return self.pools[provider]

    def has_keys(self, provider: str) -> bool:
        return provider in self.pools and bool(self.pools[provider].keys)

    def backoff_seconds(self, attempt: int) -> float:
        return (2 ** attempt) + self._jitter()

    async def execute_with_retry(
        self,
        provider: str,
        operation: Callable[[str], Awaitable[Any]],
        context: str = "",
        max_attempts: Optional[int] = None,
    ) -> Any:
        """
        Call operation(credential) until it succeeds or retrying stops making sense.

        Only ProviderError with status 429/503 is retried. Anything else, or the
        last attempt failing, raises ProviderCallFailed carrying the last error
        message and the attempt count.
        """
        pool = self.pool(provider)
        attempts = max_attempts or self.max_attempts
        context = truncate(context, 60)

        for attempt in range(1, attempts + 1):
            key = pool.next_key()
            try:
                result = await operation(key)
            except Exception as e:
                pool.record_error(key)

                retriable = isinstance(e, ProviderError) and e.is_retriable
                status = getattr(e, "status_code", None)

                if retriable and attempt < attempts:
                    delay = self.backoff_seconds(attempt)
                    logger.warning(
                        f"{provider} returned {status}. Retrying attempt {attempt + 1}/{attempts} "
                        f"after {round(delay)}s..."
                    )
                    await self._sleep(delay)
                    continue

                logger.error(
                    f"{provider} call failed definitively after {attempt} attempt(s) for article: \"{context}...\""
                )
                raise ProviderCallFailed(str(e), attempt, context, status) from e

            pool.record_success(key)
            return result

        # Unreachable: the loop either returns or raises
        raise ProviderCallFailed(f"{provider} call failed", attempts, context)

    def get_statistics(self, provider: Optional[str] = None) -> Dict[str, Any]:
        """Usage/error snapshot. Keys only ever appear masked."""
        if provider is not None:
            return self.pool(provider).statistics()
        return {name: pool.statistics() for name, pool in self.pools.items()}
