"""Job orchestration for partition maintenance and leaderboard updates.

This module provides the JobRunner class that wires the object store,
partition databases, retention and the leaderboard materializer together
and runs one periodic job to completion.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from redis.asyncio import Redis

from signal_leaderboard.config import Settings, get_settings
from signal_leaderboard.leaderboard.materializer import LeaderboardMaterializer, MaterializeResult
from signal_leaderboard.objectstore.base import ObjectStore
from signal_leaderboard.objectstore.errors import ObjectStoreError, TransientIOError
from signal_leaderboard.objectstore.memory import InMemoryObjectStore
from signal_leaderboard.objectstore.telegram import TelegramObjectStore
from signal_leaderboard.ranking.scoring import get_strategy
from signal_leaderboard.storage.models import ConcurrentModificationError, SignalEvent, now_ms
from signal_leaderboard.storage.partition import PartitionDatabase
from signal_leaderboard.storage.repository import EntityRepository, PriceUpdate
from signal_leaderboard.storage.retention import PruneResult, RetentionSweeper

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_LEASE_PREFIX = "signal_leaderboard:lease:"


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (TransientIOError,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for adding retry logic with exponential backoff to a coroutine.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        str(e),
                        delay,
                    )
                    await asyncio.sleep(delay)

            raise RetryError(
                f"All {max_retries + 1} attempts failed for {getattr(func, '__name__', func)}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


class PartitionLease:
    """Best-effort Redis lease keeping overlapping jobs off the same partition.

    Args:
        redis: Redis async client.
        ttl_seconds: Lease expiry, so a crashed job never blocks a partition forever.
        key_prefix: Prefix for lease keys.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: int = 300,
        key_prefix: str = DEFAULT_LEASE_PREFIX,
    ) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._prefix = key_prefix
        self.owner = uuid.uuid4().hex
        self._held: set[str] = set()

    def _key(self, partition: str) -> str:
        return f"{self._prefix}{partition}"

    async def acquire(self, partition: str) -> bool:
        """Take the lease; False if another job holds it."""
        was_set = await self._redis.set(self._key(partition), self.owner, nx=True, ex=self._ttl)
        if was_set:
            self._held.add(partition)
        return bool(was_set)

    async def release(self, partition: str) -> None:
        if partition not in self._held:
            return
        self._held.discard(partition)
        key = self._key(partition)
        current = await self._redis.get(key)
        if current in (self.owner, self.owner.encode()):
            await self._redis.delete(key)

    async def release_all(self) -> None:
        for partition in list(self._held):
            await self.release(partition)


class JobState(str, Enum):
    """Job lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


@dataclass
class JobStats:
    """Statistics for one job run."""

    started_at: datetime | None = None
    partitions_loaded: int = 0
    partitions_saved: int = 0
    partitions_skipped: list[str] = field(default_factory=list)
    errors: int = 0
    last_error: str | None = None


class JobRunner:
    """Runs one periodic job against every configured partition.

    Partitions are processed one after another with a fixed delay in
    between. A failure in one partition (or one view) is logged and counted
    but never stops the others.

    Example:
        ```python
        from signal_leaderboard.config import get_settings
        from signal_leaderboard.jobs import JobRunner

        async with JobRunner(get_settings()) as runner:
            await runner.run_leaderboard()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: ObjectStore | None = None,
        redis: Redis | None = None,
        dry_run: bool | None = None,
        clock: Callable[[], int] = now_ms,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    ) -> None:
        """Initialize the runner.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            store: Object store override (tests inject an in-memory store).
            redis: Redis client for partition leases; created from REDIS_URL when omitted.
            dry_run: If True, use an in-memory backend. Overrides settings.dry_run.
            clock: Returns the current time in epoch milliseconds.
            retry_base_delay: Base delay for save retries.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._partitions = self._settings.partition_config()
        self._clock = clock
        self._retry_base_delay = retry_base_delay
        self._strategy = get_strategy(self._settings.leaderboard.ranking_strategy)
        self._store = store or self._build_store()
        self._owns_redis = redis is None and self._settings.redis.enabled
        if redis is None and self._settings.redis.enabled:
            redis = Redis.from_url(self._settings.redis.url)
        self._redis = redis
        self._lease = (
            PartitionLease(redis, ttl_seconds=self._settings.redis.lease_seconds)
            if redis is not None
            else None
        )
        self._dbs: dict[str, PartitionDatabase] = {}
        self.state = JobState.IDLE
        self.stats = JobStats()

    def _build_store(self) -> ObjectStore:
        if self._dry_run:
            logger.info("Dry run: using in-memory object store")
            return InMemoryObjectStore()
        telegram = self._settings.telegram
        if telegram.bot_token is None:
            raise ValueError("TELEGRAM_BOT_TOKEN is required unless DRY_RUN is set")
        return TelegramObjectStore(
            bot_token=telegram.bot_token.get_secret_value(),
            api_base=telegram.api_base,
            requests_per_second=telegram.requests_per_second,
            timeout_seconds=telegram.timeout_seconds,
        )

    @property
    def store(self) -> ObjectStore:
        return self._store

    async def __aenter__(self) -> JobRunner:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release leases and close backend connections."""
        if self._lease is not None:
            await self._lease.release_all()
        close = getattr(self._store, "close", None)
        if close is not None:
            await close()
        if self._redis is not None and self._owns_redis:
            await self._redis.aclose()
            self._redis = None
        logger.debug("Resources cleaned up")

    def _record_error(self, message: str, error: Exception) -> None:
        self.stats.errors += 1
        self.stats.last_error = f"{message}: {error}"
        logger.error("%s: %s", message, error)

    async def load_partition(self, partition: str) -> PartitionDatabase | None:
        """Load one partition (memoized). None when it is leased elsewhere or unreadable."""
        if partition in self._dbs:
            return self._dbs[partition]

        if self._lease is not None and not await self._lease.acquire(partition):
            logger.warning("Partition %s is leased by another job, skipping", partition)
            self.stats.partitions_skipped.append(partition)
            return None

        db = PartitionDatabase(
            self._store,
            partition,
            self._partitions.channel_for(partition),
            verify_pointer=self._settings.store.verify_pointer,
            clock=self._clock,
        )
        await db.load()
        if db.degraded:
            # Degraded partitions are never saved.
            logger.error("Partition %s could not be read from the backend, skipping", partition)
            self.stats.partitions_skipped.append(partition)
            if self._lease is not None:
                await self._lease.release(partition)
            return None

        self._dbs[partition] = db
        self.stats.partitions_loaded += 1
        return db

    async def load_partitions(
        self, partitions: Iterable[str] | None = None
    ) -> dict[str, PartitionDatabase]:
        """Load partitions sequentially with the configured inter-partition delay."""
        ids = list(partitions) if partitions is not None else self._partitions.partition_ids
        loaded: dict[str, PartitionDatabase] = {}
        for index, partition in enumerate(ids):
            if index:
                await asyncio.sleep(self._settings.store.partition_delay_seconds)
            db = await self.load_partition(partition)
            if db is not None:
                loaded[partition] = db
        return loaded

    async def save_partition(self, db: PartitionDatabase) -> bool:
        """Save one partition, retrying transient failures.

        Raises:
            RetryError: If every attempt failed with a transient error.
            ObjectStoreError: For non-transient backend failures.
            ConcurrentModificationError: If pointer verification fails.
        """
        save = with_retry(
            max_retries=self._settings.store.save_retries,
            base_delay=self._retry_base_delay,
            retry_on=(TransientIOError,),
        )(db.save)
        return await save()

    async def save_all(self) -> int:
        """Save every loaded partition independently; returns how many were written."""
        written = 0
        for partition, db in self._dbs.items():
            try:
                if await self.save_partition(db):
                    written += 1
            except (RetryError, ObjectStoreError, ConcurrentModificationError) as e:
                self._record_error(f"Saving {partition} failed", e)
        self.stats.partitions_saved += written
        return written

    async def _run(self, name: str, job: Callable[[], Awaitable[T]]) -> T:
        self.state = JobState.RUNNING
        self.stats.started_at = datetime.now(UTC)
        logger.info("Starting %s job", name)
        try:
            result = await job()
        except Exception as e:
            self.state = JobState.ERROR
            self.stats.last_error = str(e)
            logger.error("%s job failed: %s", name, e)
            raise
        self.state = JobState.DONE
        logger.info(
            "%s job finished: %d loaded, %d saved, %d errors",
            name,
            self.stats.partitions_loaded,
            self.stats.partitions_saved,
            self.stats.errors,
        )
        return result

    async def run_leaderboard(self, *, reset: bool = False) -> MaterializeResult | None:
        """Load every partition, materialize all views and save the config.

        Returns:
            The materialization result, or None if the config could not be read
            or saved. Nothing is published when it could not be read.
        """

        async def job() -> MaterializeResult | None:
            dbs = await self.load_partitions()
            lb = self._settings.leaderboard
            materializer = LeaderboardMaterializer(
                self._store,
                self._partitions,
                top_n=lb.top_n,
                period=lb.period,
                summary_size=lb.summary_size,
                hall_of_fame_size=lb.hall_of_fame_size,
                strategy=self._strategy,
                clock=self._clock,
            )
            try:
                if reset:
                    await materializer.reset()
                result = await materializer.update_all(dbs)
            except ObjectStoreError as e:
                self._record_error("Leaderboard config could not be read or saved", e)
                result = None
            # Loading may have migrated legacy documents; persist the upgrades.
            await self.save_all()
            return result

        return await self._run("leaderboard", job)

    async def run_cleanup(
        self, *, max_age_days: int | None = None, archive: bool | None = None
    ) -> dict[str, PruneResult]:
        """Prune every partition and save the ones that changed."""
        retention = self._settings.retention
        days = max_age_days if max_age_days is not None else retention.max_age_days
        do_archive = archive if archive is not None else retention.archive

        async def job() -> dict[str, PruneResult]:
            results: dict[str, PruneResult] = {}
            for partition, db in (await self.load_partitions()).items():
                sweeper = RetentionSweeper(
                    db,
                    self._store,
                    archive_channel=self._partitions.archive_channel,
                    strategy=self._strategy,
                )
                results[partition] = await sweeper.prune_old_data(days, archive=do_archive)
            await self.save_all()
            return results

        return await self._run("cleanup", job)

    async def ingest(self, partition: str, events: Iterable[SignalEvent]) -> int:
        """Record pre-scored signal events into a partition and save it.

        Returns:
            Number of events recorded (duplicates are skipped).
        """
        db = await self.load_partition(partition)
        if db is None:
            return 0
        repo = EntityRepository(db)
        recorded = sum(1 for event in events if repo.record_signal(event))
        await self.save_partition(db)
        return recorded

    async def update_prices(
        self, partition: str, prices: Mapping[str, float]
    ) -> list[PriceUpdate]:
        """Apply price observations to a partition and save it."""
        db = await self.load_partition(partition)
        if db is None:
            return []
        repo = EntityRepository(db)
        updates = [
            update
            for address, price in prices.items()
            if (update := repo.apply_price(address, price)) is not None
        ]
        await self.save_partition(db)
        return updates
