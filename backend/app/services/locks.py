"""
Serializing boundary for booking commits, coupon redemptions and payment
signals.

Named locks:
  booking:therapist:{therapist_id}:{YYYY-MM-DD}
  booking:client:{client_id}:{YYYY-MM-DD}
  client:new:{email}          first booking of a client not stored yet
  coupon:{CODE}
  payment:{transaction_id}

With Redis configured the locks are Redis locks (shared by every worker
process); otherwise they are process-local threading locks, kept only
while someone holds or waits for them. Acquisition always has a bounded
wait and raises StorageError on timeout.
"""

import logging
import threading
from contextlib import ExitStack, contextmanager
from datetime import date

from redis import Redis
from redis.exceptions import LockError, RedisError

from ..config import settings
from ..errors import StorageError
from ..redis_client import redis_client

logger = logging.getLogger(__name__)

LOCK_PREFIX = "lock"


def therapist_day_key(therapist_id: int, target_date: date) -> str:
    return f"booking:therapist:{therapist_id}:{target_date.isoformat()}"


def client_day_key(client_id: int, target_date: date) -> str:
    return f"booking:client:{client_id}:{target_date.isoformat()}"


def new_client_key(email: str) -> str:
    return f"client:new:{email.strip().lower()}"


def coupon_key(code: str) -> str:
    return f"coupon:{code.strip().upper()}"


def payment_key(transaction_id: str) -> str:
    return f"payment:{transaction_id}"


class LockManager:
    """Hands out named locks; sorted acquisition keeps multi-key use deadlock-free."""

    def __init__(self, redis: Redis | None = None, timeout: float | None = None):
        self.redis = redis
        self.timeout = timeout if timeout is not None else settings.lock_timeout_seconds
        # name -> [lock, number of holders and waiters]
        self._local: dict[str, list] = {}
        self._guard = threading.Lock()

    def _checkout(self, name: str) -> threading.Lock:
        with self._guard:
            entry = self._local.get(name)
            if entry is None:
                entry = self._local[name] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, name: str) -> None:
        with self._guard:
            entry = self._local[name]
            entry[1] -= 1
            if entry[1] == 0:
                del self._local[name]

    def local_lock_count(self) -> int:
        with self._guard:
            return len(self._local)

    @contextmanager
    def hold(self, name: str):
        """Hold one named lock."""
        if self.redis is not None:
            lock = self.redis.lock(
                f"{LOCK_PREFIX}:{name}",
                timeout=self.timeout * 3,
                blocking_timeout=self.timeout,
            )
            try:
                acquired = lock.acquire()
            except RedisError as e:
                raise StorageError(f"Lock backend unavailable: {e}") from e
            if not acquired:
                raise StorageError(f"Timed out waiting for {name}")
            try:
                yield
            finally:
                try:
                    lock.release()
                except LockError:
                    logger.warning(f"Lock {name} expired before release")
            return

        lock = self._checkout(name)
        try:
            if not lock.acquire(timeout=self.timeout):
                raise StorageError(f"Timed out waiting for {name}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(name)

    @contextmanager
    def hold_all(self, *names: str):
        """Hold several named locks (duplicates ignored)."""
        with ExitStack() as stack:
            for name in sorted(set(names)):
                stack.enter_context(self.hold(name))
            yield


booking_locks = LockManager(redis_client)
