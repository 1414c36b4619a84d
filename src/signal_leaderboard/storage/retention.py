"""Retention sweep with optional cold-storage archival."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from signal_leaderboard.objectstore.base import ObjectStore
from signal_leaderboard.objectstore.errors import ObjectStoreError
from signal_leaderboard.ranking.scoring import DEFAULT_STRATEGY, RankingStrategy
from signal_leaderboard.storage.models import (
    DAY_MS,
    RECENT_SIGNAL_WINDOW_MS,
    TokenRecord,
    WalletRecord,
)
from signal_leaderboard.storage.partition import PartitionDatabase

logger = logging.getLogger(__name__)

WINNER_GRACE_DAYS = 7
WINNER_MULTIPLIER = 1.0
WALLET_INACTIVE_DAYS = 7
WALLET_KEEP_SCORE = 0.5


@dataclass
class ArchiveOutcome:
    """Result of writing an archive bundle."""

    filename: str
    tokens: int
    wallets: int
    pointer_id: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PruneResult:
    """Counts of entities removed by a retention sweep."""

    partition: str
    tokens: int = 0
    wallets: int = 0
    signals: int = 0
    archive: ArchiveOutcome | None = None
    removed_tokens: list[str] = field(default_factory=list)
    removed_wallets: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.tokens + self.wallets + self.signals


def archive_month(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=UTC).strftime("%Y-%m")


def archive_filename(partition: str, ts_ms: int) -> str:
    return f"{partition}-archive-{archive_month(ts_ms)}.json"


class RetentionSweeper:
    """Evicts stale tokens, wallets and recent signals from a loaded partition.

    Tokens older than ``max_age_days`` (by last signal) are removed, except
    winners (current multiplier >= 1.0), which get an extra 7 days. Wallets
    are removed only when inactive for more than 7 days and ranked below 0.5.
    Recent signals are kept for 7 days.

    Args:
        db: A loaded partition database.
        store: Object store used for archive bundles.
        archive_channel: Cold-storage channel (required to archive).
        strategy: Ranking strategy deciding which inactive wallets are kept.
    """

    def __init__(
        self,
        db: PartitionDatabase,
        store: ObjectStore,
        *,
        archive_channel: str | None = None,
        strategy: RankingStrategy = DEFAULT_STRATEGY,
    ) -> None:
        self._db = db
        self._store = store
        self._archive_channel = archive_channel
        self._strategy = strategy

    def token_expired(self, token: TokenRecord, now: int, max_age_days: int) -> bool:
        age_days = max_age_days
        if token.multiplier >= WINNER_MULTIPLIER:
            age_days += WINNER_GRACE_DAYS
        return token.last_sig < now - age_days * DAY_MS

    def wallet_expired(self, wallet: WalletRecord, now: int, peaks: dict[str, float]) -> bool:
        if wallet.last_seen >= now - WALLET_INACTIVE_DAYS * DAY_MS:
            return False
        return self._strategy.wallet_score(wallet, peaks) < WALLET_KEEP_SCORE

    async def prune_old_data(self, max_age_days: int = 30, archive: bool = False) -> PruneResult:
        """Remove stale entities, archiving them first when requested.

        Archive failures are logged and recorded in the result; they never
        prevent removal.
        """
        doc = self._db.document
        now = self._db.clock()
        result = PruneResult(partition=self._db.partition)

        result.removed_tokens = [
            addr for addr, token in doc.tokens.items() if self.token_expired(token, now, max_age_days)
        ]
        removed = set(result.removed_tokens)
        peaks = {
            addr: token.peak_multiplier
            for addr, token in doc.tokens.items()
            if addr not in removed
        }
        result.removed_wallets = [
            addr for addr, wallet in doc.wallets.items() if self.wallet_expired(wallet, now, peaks)
        ]

        if archive and (result.removed_tokens or result.removed_wallets):
            result.archive = await self._archive(result, now)

        for addr in result.removed_tokens:
            del doc.tokens[addr]
        for addr in result.removed_wallets:
            del doc.wallets[addr]

        signal_cutoff = now - RECENT_SIGNAL_WINDOW_MS
        before = len(doc.recent_signals)
        doc.recent_signals = [s for s in doc.recent_signals if s.time > signal_cutoff]

        result.tokens = len(result.removed_tokens)
        result.wallets = len(result.removed_wallets)
        result.signals = before - len(doc.recent_signals)
        if result.total:
            self._db.mark_dirty()

        logger.info(
            "Pruned %s: %d tokens, %d wallets, %d signals",
            self._db.partition,
            result.tokens,
            result.wallets,
            result.signals,
        )
        return result

    async def _archive(self, result: PruneResult, now: int) -> ArchiveOutcome:
        """Upload this sweep's evictions as one new, unpinned bundle.

        Bundles are write-once: a later sweep in the same month uploads another
        bundle under the same month-stamped name and never edits an earlier one.
        """
        doc = self._db.document
        filename = archive_filename(self._db.partition, now)
        outcome = ArchiveOutcome(
            filename=filename,
            tokens=len(result.removed_tokens),
            wallets=len(result.removed_wallets),
        )
        if self._archive_channel is None:
            outcome.error = "no archive channel configured"
            logger.warning("Cannot archive %s: %s", self._db.partition, outcome.error)
            return outcome

        bundle = {
            "partition": self._db.partition,
            "archivedAt": now,
            "month": archive_month(now),
            "tokens": {addr: doc.tokens[addr].to_dict() for addr in result.removed_tokens},
            "wallets": {addr: doc.wallets[addr].to_dict() for addr in result.removed_wallets},
        }
        caption = (
            f"Archive: {self._db.partition.upper()} {bundle['month']} | "
            f"{outcome.tokens} tokens, {outcome.wallets} wallets"
        )
        try:
            blob = await self._store.upload(
                self._archive_channel,
                json.dumps(bundle, indent=2).encode("utf-8"),
                filename,
                caption,
            )
        except ObjectStoreError as e:
            outcome.error = str(e)
            logger.warning("Archive of %s failed, pruning anyway: %s", self._db.partition, e)
            return outcome

        outcome.pointer_id = blob.pointer_id
        logger.info("Archived %s to %s", self._db.partition, filename)
        return outcome
