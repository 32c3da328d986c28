"""
Concurrency control utilities.

This module provides three complementary concurrency mechanisms:

1. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across processes/servers
   - TTL prevents deadlocks from crashed processes
   - Use for: operations spanning multiple rows (leasing jobs of a
     concurrency-limited type, executing one payout batch)

2. **Row Version Check** (check_version)
   - Version comparison plus select_for_update on one row
   - Use for: callers that read a version earlier (API clients) and
     want their write rejected if someone else got there first

3. **Compare-and-Swap** (compare_and_swap)
   - Single conditional UPDATE ... WHERE version = expected
   - Use for: claiming a row without holding a lock (job leases)

Usage:

    from core.locks import DistributedLock, check_version, compare_and_swap

    with DistributedLock(f"payout:batch:{batch_id}", ttl=120):
        execute_batch(batch_id)

    with transaction.atomic():
        milestone = check_version(Milestone, milestone_id, expected_version=3)

    compare_and_swap(Job, job.pk, job.version, status="leased", worker_id="w-1")
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction
from django.db.models import F
from django.utils import timezone

from django_redis import get_redis_connection

from core.exceptions import LockAcquisitionError, NotFoundError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

# Type variable for model classes
T = TypeVar("T", bound=models.Model)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - Automatic TTL prevents deadlocks from crashed processes
        - Token-based ownership prevents accidental release by other processes
        - Blocking and non-blocking acquisition modes
        - Context manager support

    Example:
        with DistributedLock("jobs:lease:payout.execute", ttl=30, timeout=5.0):
            lease_next_job()

        lock = DistributedLock("payout:batch:123", ttl=120, blocking=False)
        try:
            with lock:
                execute_batch()
        except LockAcquisitionError:
            # Another worker is already executing this batch
            ...

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)
    """

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    # Lua script for atomic check-and-extend
    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        """Get Redis connection (lazy initialization)."""
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Attempt to acquire the lock.

        Returns:
            True if lock was acquired

        Raises:
            LockAcquisitionError: If lock couldn't be acquired
        """
        token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.time() + self.timeout
            while time.time() < end_time:
                if self._try_acquire(redis, token):
                    self._token = token
                    return True
                time.sleep(0.05)

            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis, token):
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        self._token = token
        return True

    def _try_acquire(self, redis: Redis, token: str) -> bool:
        """Try once to acquire the lock."""
        return bool(redis.set(self.key, token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if lock was released, False if we didn't hold it
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, additional_ttl: int | None = None) -> bool:
        """
        Reset the lock TTL if we hold it.

        Args:
            additional_ttl: New TTL in seconds (defaults to original TTL)

        Returns:
            True if lock was extended, False if we don't hold it
        """
        if self._token is None:
            return False

        ttl = additional_ttl or self.ttl
        redis = self._get_redis()
        result = redis.eval(self.EXTEND_SCRIPT, 1, self.key, self._token, ttl)
        return bool(result)

    @property
    def is_held(self) -> bool:
        """Check if we currently hold the lock."""
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


# =============================================================================
# Optimistic Locking
# =============================================================================


def _raise_missing_or_stale(model_class: type[T], pk: Any, expected_version: int) -> None:
    model_name = model_class.__name__
    current = model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
    if current is None:
        raise NotFoundError(
            f"{model_name} {pk} not found",
            error_code=f"{model_name.upper()}_NOT_FOUND",
            details={"pk": str(pk)},
        )
    raise StaleRecordError(
        f"{model_name} {pk} has been modified "
        f"(expected version {expected_version}, current {current})",
        details={
            "pk": str(pk),
            "expected_version": expected_version,
            "current_version": current,
        },
    )


def check_version(
    model_class: type[T],
    pk: Any,
    expected_version: int,
) -> T:
    """
    Atomically check version and lock a record for update.

    Args:
        model_class: Django model class (must have 'version' field)
        pk: Primary key of the record
        expected_version: Version the caller expects

    Returns:
        The locked model instance

    Raises:
        StaleRecordError: If version doesn't match (concurrent modification)
        NotFoundError: If record doesn't exist

    Note:
        Call inside transaction.atomic(); the row lock is held until the
        outer transaction commits or rolls back.
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )
        if instance is None:
            _raise_missing_or_stale(model_class, pk, expected_version)
        return instance


def compare_and_swap(
    model_class: type[T],
    pk: Any,
    expected_version: int,
    **changes: Any,
) -> int:
    """
    Apply ``changes`` only if the row still has ``expected_version``.

    The UPDATE bumps the version in the same statement, so exactly one of
    several concurrent callers holding the same version wins.

    Args:
        model_class: Django model class (must have 'version' field)
        pk: Primary key of the record
        expected_version: Version read by the caller
        **changes: Column values to write

    Returns:
        The new version number

    Raises:
        StaleRecordError: If another writer updated the row first
        NotFoundError: If record doesn't exist
    """
    if any(f.name == "updated_at" for f in model_class._meta.concrete_fields):
        changes.setdefault("updated_at", timezone.now())
    rows = model_class.objects.filter(pk=pk, version=expected_version).update(
        version=F("version") + 1,
        **changes,
    )
    if rows == 0:
        _raise_missing_or_stale(model_class, pk, expected_version)
    return expected_version + 1


__all__ = [
    "DistributedLock",
    "check_version",
    "compare_and_swap",
]
