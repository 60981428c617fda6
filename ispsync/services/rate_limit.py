"""Per-key fixed-window limiter for the tenant gateway."""

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from ispsync.config import settings

_NAMESPACE = "tenant-api"


class ApiKeyRateLimiter:
    def __init__(self, limit: int, window_seconds: int, storage_uri: str = "memory://"):
        self.storage = storage_from_string(storage_uri)
        self.strategy = FixedWindowRateLimiter(self.storage)
        self.item = RateLimitItemPerSecond(limit, window_seconds)

    def hit(self, key_id) -> bool:
        """Count one request; False once the window is exhausted."""
        return self.strategy.hit(self.item, _NAMESPACE, str(key_id))

    def remaining(self, key_id) -> int:
        return self.strategy.get_window_stats(self.item, _NAMESPACE, str(key_id)).remaining

    def reset(self) -> None:
        self.storage.reset()


_limiter: ApiKeyRateLimiter | None = None


def get_rate_limiter() -> ApiKeyRateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = ApiKeyRateLimiter(
            settings.api_rate_limit,
            settings.api_rate_window_seconds,
            settings.api_rate_limit_storage_uri,
        )
    return _limiter


def reset_rate_limiter() -> None:
    """Drop the cached limiter so the next call re-reads settings."""
    global _limiter
    _limiter = None
