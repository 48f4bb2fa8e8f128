"""
Keyed Locks for Alert State Transitions

Alert refresh/resolve is a read-check-write sequence that must be serialized
per (project_id, alert_type). Two backends:

- InProcessKeyedLock: one threading.Lock per key, for a single worker
- RedisKeyedLock: Redis lock per key, for several workers sharing a database
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, TYPE_CHECKING

from redis import Redis
from redis.exceptions import LockError, RedisError

from .errors import RepositoryError
from .models import AlertType

if TYPE_CHECKING:
    from src.utils.config import Settings

logger = logging.getLogger(__name__)


def alert_lock_key(project_id: str, alert_type: AlertType) -> str:
    return f"{project_id}:{alert_type.value}"


class KeyedLock(ABC):
    """Mutual exclusion scoped to a string key."""

    @abstractmethod
    def hold(self, key: str) -> Iterator[None]:
        """Context manager holding the lock for ``key``."""
        pass


class InProcessKeyedLock(KeyedLock):
    """Per-key threading locks, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield


class RedisKeyedLock(KeyedLock):
    """
    Distributed lock per key using redis-py's Lock.

    ``timeout`` bounds how long a crashed holder can block others;
    ``blocking_timeout`` bounds how long a caller waits before failing.
    """

    def __init__(
        self,
        client: Redis,
        namespace: str = "accuracy",
        timeout: float = 10.0,
        blocking_timeout: float = 5.0,
    ):
        self._client = client
        self.namespace = namespace
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    def _name(self, key: str) -> str:
        return f"{self.namespace}:alert-lock:{key}"

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._client.lock(
            self._name(key),
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        try:
            acquired = lock.acquire()
        except RedisError as e:
            logger.error(f"Redis lock acquisition failed for {key}: {e}")
            raise RepositoryError(f"Could not acquire alert lock for {key}") from e

        if not acquired:
            raise RepositoryError(
                f"Timed out after {self.blocking_timeout}s waiting for alert lock {key}"
            )

        try:
            yield
        finally:
            try:
                lock.release()
            except LockError as e:
                # Lock expired while held; the write already happened
                logger.warning(f"Alert lock {key} expired before release: {e}")


def create_keyed_lock(settings: "Settings", client: Optional[Redis] = None) -> KeyedLock:
    """Build the lock backend named by ALERT_LOCK_BACKEND."""
    backend = settings.ALERT_LOCK_BACKEND.strip().lower()
    if backend == "redis":
        if client is None:
            if not settings.REDIS_URL:
                raise ValueError("ALERT_LOCK_BACKEND=redis requires REDIS_URL")
            client = Redis.from_url(settings.REDIS_URL)
        logger.info("Using Redis alert locks")
        return RedisKeyedLock(
            client,
            namespace=settings.CACHE_NAMESPACE,
            timeout=settings.ALERT_LOCK_TIMEOUT_SECONDS,
            blocking_timeout=settings.ALERT_LOCK_BLOCKING_TIMEOUT_SECONDS,
        )
    if backend != "memory":
        raise ValueError(f"Unknown ALERT_LOCK_BACKEND: {settings.ALERT_LOCK_BACKEND}")
    return InProcessKeyedLock()
