"""
Per-client rate limiting.

Each ``(scope, identity)`` pair owns a fixed window opened by its first
request, counted by ``limits``' fixed-window strategy over in-memory storage.
The storage expires elapsed windows on its own, so memory stays bounded by
the clients active in the current window and no request pays for a scan.

``limits`` reads the counter back outside its key lock, so each hit runs
under one of a fixed set of striped locks: a burst from one client is
counted exactly while unrelated clients rarely share a stripe.
"""
import threading
import time
from typing import Dict, List, Optional, Union

import structlog
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from upload_gateway.core.exceptions import RateLimitedError
from upload_gateway.models.enums import UploadOperation
from upload_gateway.models.upload import RateLimitDecision

logger = structlog.get_logger(__name__)

NAMESPACE = "upload-gateway"


class RateLimiter:
    """In-process rate limiter keyed by operation scope and client identity."""

    def __init__(
        self,
        limits: Optional[Dict[Union[UploadOperation, str], int]] = None,
        window_ms: int = 60000,
        lock_stripes: int = 64,
    ):
        """
        Args:
            limits: Requests per window for each operation
            window_ms: Window length for ``admit_operation`` (whole seconds)
            lock_stripes: Number of locks shared out between identities
        """
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be at least 1")
        self.limits = {
            (k.value if isinstance(k, UploadOperation) else k): v
            for k, v in (limits or {}).items()
        }
        self.window_ms = window_ms
        self.storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(lock_stripes)]

    @staticmethod
    def _item(limit: int, window_ms: int) -> RateLimitItem:
        if limit <= 0 or window_ms <= 0:
            raise ValueError("limit and window_ms must be positive")
        if window_ms % 1000:
            raise ValueError("window_ms must be a whole number of seconds")
        return RateLimitItemPerSecond(limit, window_ms // 1000, namespace=NAMESPACE)

    def admit(
        self,
        identity: str,
        limit: int,
        window_ms: int,
        scope: str = "default",
    ) -> RateLimitDecision:
        """
        Count one request against ``identity`` and decide whether to admit it.

        Returns:
            RateLimitDecision; when rejected, ``retry_after_ms`` is the time
            left in the current window (always at least 1)
        """
        item = self._item(limit, window_ms)
        lock = self._locks[hash((scope, identity)) % len(self._locks)]
        with lock:
            if self._strategy.hit(item, scope, identity):
                return RateLimitDecision(admitted=True)
            stats = self._strategy.get_window_stats(item, scope, identity)
        retry_after = max(1, round((stats.reset_time - time.time()) * 1000))
        return RateLimitDecision(admitted=False, retry_after_ms=retry_after)

    def admit_operation(
        self, identity: str, operation: Union[UploadOperation, str]
    ) -> RateLimitDecision:
        """Admit using the configured per-operation limit."""
        scope = operation.value if isinstance(operation, UploadOperation) else operation
        limit = self.limits.get(scope)
        if limit is None:
            raise KeyError(f"No rate limit configured for operation '{scope}'")
        return self.admit(identity, limit, self.window_ms, scope=scope)

    def enforce(self, identity: str, operation: Union[UploadOperation, str]) -> None:
        """
        Raises:
            RateLimitedError: The identity exhausted its budget for this window
        """
        decision = self.admit_operation(identity, operation)
        if not decision.admitted:
            scope = operation.value if isinstance(operation, UploadOperation) else operation
            logger.warning(
                "rate_limited",
                client_id=identity,
                operation=scope,
                retry_after_ms=decision.retry_after_ms,
            )
            raise RateLimitedError(decision.retry_after_ms, operation=scope.replace("_", " "))
