"""Leaderboard materialization across partitions.

The materializer selects per-partition top tokens and wallets, merges them
into a cross-partition summary, maintains the hall of fame, and upserts each
rendered view through a ``PointerBinding``. View pointers and hall-of-fame
entries live in a config document persisted through the same pinned-document
helper as partition data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from signal_leaderboard.config import PartitionConfig
from signal_leaderboard.leaderboard.binding import PointerBinding
from signal_leaderboard.leaderboard.render import (
    render_hall_of_fame,
    render_summary,
    render_token_view,
    render_wallet_view,
)
from signal_leaderboard.leaderboard.selection import (
    SUMMARY_SIZE,
    HallOfFameEntry,
    TokenRow,
    hall_of_fame_candidates,
    merge_hall_of_fame,
    merge_top_tokens,
    parse_period,
    top_tokens,
    top_wallets,
)
from signal_leaderboard.leaderboard.stats import GainsStats
from signal_leaderboard.objectstore.base import ObjectStore
from signal_leaderboard.objectstore.errors import ObjectStoreError
from signal_leaderboard.ranking.scoring import DEFAULT_STRATEGY, RankingStrategy
from signal_leaderboard.storage.document import PinnedDocument
from signal_leaderboard.storage.models import SchemaError, now_ms
from signal_leaderboard.storage.partition import PartitionDatabase
from signal_leaderboard.storage.repository import EntityRepository

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "leaderboard-config.json"
VIEW_KINDS = ("tokens", "wallets")

DEFAULT_TOP_N = 10
DEFAULT_PERIOD = "7d"
DEFAULT_HALL_OF_FAME_SIZE = 50


@dataclass
class MaterializerConfig:
    """Pointers of every published view plus the accumulated hall of fame."""

    per_partition: dict[str, dict[str, dict[str, int | None]]] = field(default_factory=dict)
    summary_pointers: dict[str, int | None] = field(default_factory=dict)
    hall_of_fame_pointer: int | None = None
    hall_of_fame: dict[str, HallOfFameEntry] = field(default_factory=dict)
    updated_at: int = 0

    def view_pointer(self, partition: str, variant: str, kind: str) -> int | None:
        return self.per_partition.get(partition, {}).get(variant, {}).get(kind)

    def set_view_pointer(self, partition: str, variant: str, kind: str, pointer: int) -> None:
        self.per_partition.setdefault(partition, {}).setdefault(variant, {})[kind] = pointer

    def clear_pointers(self) -> None:
        self.per_partition = {}
        self.summary_pointers = {}
        self.hall_of_fame_pointer = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "perPartition": self.per_partition,
            "summaryPointers": self.summary_pointers,
            "hallOfFamePointer": self.hall_of_fame_pointer,
            "hallOfFame": {key: entry.to_dict() for key, entry in self.hall_of_fame.items()},
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> MaterializerConfig:
        """Parse a config document, including the older ``leaderboards``/``summaries`` layout.

        Raises:
            SchemaError: If the document is malformed.
        """
        if not isinstance(data, dict):
            raise SchemaError("Leaderboard config must be a JSON object")
        try:
            per_partition = data.get("perPartition")
            if per_partition is None:
                per_partition = data.get("leaderboards") or {}
            summaries = data.get("summaryPointers")
            if summaries is None:
                summaries = data.get("summaries") or {}
            return cls(
                per_partition={
                    str(partition): {
                        str(variant): {
                            str(kind): None if pointer is None else int(pointer)
                            for kind, pointer in (kinds or {}).items()
                        }
                        for variant, kinds in (variants or {}).items()
                    }
                    for partition, variants in per_partition.items()
                },
                summary_pointers={
                    str(variant): None if pointer is None else int(pointer)
                    for variant, pointer in summaries.items()
                },
                hall_of_fame_pointer=(
                    None
                    if data.get("hallOfFamePointer") is None
                    else int(data["hallOfFamePointer"])
                ),
                hall_of_fame={
                    key: HallOfFameEntry.from_dict(entry)
                    for key, entry in (data.get("hallOfFame") or {}).items()
                },
                updated_at=int(data.get("updatedAt") or 0),
            )
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise SchemaError(f"Malformed leaderboard config: {e}") from e


@dataclass
class MaterializeResult:
    """Outcome of one materialization pass."""

    published: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    summary: list[TokenRow] = field(default_factory=list)
    stats: GainsStats | None = None
    hall_of_fame: list[HallOfFameEntry] = field(default_factory=list)


class LeaderboardMaterializer:
    """Renders and upserts leaderboard views for every partition.

    Args:
        store: Object store backend.
        partitions: Channel mapping; views go to ``view_channels`` per variant.
        top_n: Rows per partition view.
        period: Time window for the token view (``24h``, ``7d`` ...).
        summary_size: Rows kept after cross-partition aggregation.
        hall_of_fame_size: Entries kept in the accumulated hall of fame.
        strategy: Ranking strategy.
        clock: Returns the current time in epoch milliseconds.

    Example:
        ```python
        materializer = LeaderboardMaterializer(store, settings.partition_config())
        result = await materializer.update_all({"sol": sol_db, "eth": eth_db})
        ```
    """

    def __init__(
        self,
        store: ObjectStore,
        partitions: PartitionConfig,
        *,
        top_n: int = DEFAULT_TOP_N,
        period: str = DEFAULT_PERIOD,
        summary_size: int = SUMMARY_SIZE,
        hall_of_fame_size: int = DEFAULT_HALL_OF_FAME_SIZE,
        strategy: RankingStrategy = DEFAULT_STRATEGY,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if partitions.config_channel is None:
            raise ValueError("A config channel is required to materialize leaderboards")
        self._store = store
        self._partitions = partitions
        self.top_n = top_n
        self.period = period
        self._period_ms = parse_period(period)
        self.summary_size = summary_size
        self.hall_of_fame_size = hall_of_fame_size
        self._strategy = strategy
        self._clock = clock
        self._pinned = PinnedDocument(store, partitions.config_channel, CONFIG_FILENAME, indent=2)
        self.config: MaterializerConfig | None = None

    async def load_config(self) -> MaterializerConfig:
        """Load the config document.

        A missing, foreign or malformed document yields an empty config.

        Raises:
            ObjectStoreError: If the backend could not be read. Nothing is cached,
                so no view or hall-of-fame entry is overwritten.
        """
        if self.config is not None:
            return self.config

        pointer = await self._pinned.fetch()
        if pointer is None:
            self.config = MaterializerConfig()
        elif pointer.file_name != CONFIG_FILENAME:
            # Some other message is pinned; leave it alone and create our own.
            self._pinned.forget_pointer()
            self.config = MaterializerConfig()
        else:
            try:
                self.config = MaterializerConfig.from_dict(await self._pinned.read_json(pointer))
            except SchemaError as e:
                logger.warning("Malformed leaderboard config, starting fresh: %s", e)
                self.config = MaterializerConfig()
        return self.config

    async def save_config(self) -> None:
        """Persist the config document.

        Raises:
            ObjectStoreError: If the backend write fails.
        """
        config = await self.load_config()
        config.updated_at = self._clock()
        await self._pinned.write_json(config.to_dict(), caption="Leaderboard Config")

    async def reset(self) -> None:
        """Unpin and forget every view pointer so all views are recreated.

        Raises:
            ObjectStoreError: If the config document cannot be read.
        """
        config = await self.load_config()
        for partition, variants in config.per_partition.items():
            for variant, kinds in variants.items():
                channel = self._partitions.view_channels.get(variant)
                if channel is None:
                    continue
                for pointer in kinds.values():
                    if pointer is not None:
                        await self._store.unpin(channel, pointer)
        for variant, pointer in config.summary_pointers.items():
            channel = self._partitions.view_channels.get(variant)
            if channel is not None and pointer is not None:
                await self._store.unpin(channel, pointer)
        hof_channel = self._partitions.hall_of_fame_channel
        if hof_channel is not None and config.hall_of_fame_pointer is not None:
            await self._store.unpin(hof_channel, config.hall_of_fame_pointer)
        config.clear_pointers()
        logger.info("Leaderboard view pointers reset")

    async def _upsert(
        self,
        result: MaterializeResult,
        name: str,
        channel: str,
        pointer: int | None,
        content: str,
    ) -> int | None:
        binding = PointerBinding(pointer)
        try:
            new_pointer = await binding.upsert(self._store, channel, content)
        except ObjectStoreError as e:
            logger.warning("Publishing %s failed, previous view kept: %s", name, e)
            result.failed.append(name)
            return None
        result.published.append(name)
        return new_pointer

    async def publish_partition(
        self, db: PartitionDatabase, result: MaterializeResult
    ) -> list[TokenRow]:
        """Publish one partition's token and wallet views to every variant channel."""
        config = await self.load_config()
        repo = EntityRepository(db)
        now = self._clock()
        partition = db.partition
        tokens = top_tokens(
            repo.all_tokens(),
            partition=partition,
            now=now,
            period_ms=self._period_ms,
            n=self.top_n,
            strategy=self._strategy,
        )
        wallets = top_wallets(
            repo.all_wallets(),
            repo.get_token_peaks(),
            partition=partition,
            now=now,
            n=self.top_n,
            strategy=self._strategy,
        )

        for variant, channel in self._partitions.view_channels.items():
            views = {
                "tokens": render_token_view(
                    partition, tokens, variant=variant, channel=channel, period=self.period
                ),
                "wallets": render_wallet_view(partition, wallets, variant=variant),
            }
            for kind in VIEW_KINDS:
                pointer = await self._upsert(
                    result,
                    f"{partition}/{variant}/{kind}",
                    channel,
                    config.view_pointer(partition, variant, kind),
                    views[kind],
                )
                if pointer is not None:
                    config.set_view_pointer(partition, variant, kind, pointer)

        config.hall_of_fame = merge_hall_of_fame(
            config.hall_of_fame,
            hall_of_fame_candidates(repo.all_tokens(), partition=partition, now=now),
            size=self.hall_of_fame_size,
        )
        return tokens

    async def update_all(self, dbs: Mapping[str, PartitionDatabase]) -> MaterializeResult:
        """Publish every partition, the summaries and the hall of fame, then save the config.

        View failures are isolated and recorded in the result.

        Raises:
            ObjectStoreError: If the config document cannot be read or saved.
        """
        config = await self.load_config()
        result = MaterializeResult()
        per_partition: list[list[TokenRow]] = []

        for partition, db in dbs.items():
            logger.info("Materializing %s leaderboards", partition)
            per_partition.append(await self.publish_partition(db, result))

        result.summary = merge_top_tokens(per_partition, self.summary_size)
        result.stats = GainsStats.from_multipliers([row.peak_multiplier for row in result.summary])

        for variant, channel in self._partitions.view_channels.items():
            links = {
                partition: config.per_partition.get(partition, {}).get(variant, {})
                for partition in dbs
            }
            content = render_summary(result.summary, result.stats, links, channel=channel)
            pointer = await self._upsert(
                result,
                f"summary/{variant}",
                channel,
                config.summary_pointers.get(variant),
                content,
            )
            if pointer is not None:
                config.summary_pointers[variant] = pointer

        result.hall_of_fame = sorted(
            config.hall_of_fame.values(), key=lambda e: e.peak_multiplier, reverse=True
        )
        hof_channel = self._partitions.hall_of_fame_channel
        if hof_channel is not None:
            pointer = await self._upsert(
                result,
                "hall_of_fame",
                hof_channel,
                config.hall_of_fame_pointer,
                render_hall_of_fame(result.hall_of_fame),
            )
            if pointer is not None:
                config.hall_of_fame_pointer = pointer

        await self.save_config()
        logger.info(
            "Leaderboards updated: %d published, %d failed",
            len(result.published),
            len(result.failed),
        )
        return result
