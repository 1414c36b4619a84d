"""Entity repository: typed access to tokens, wallets, dedup keys and recent signals."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from signal_leaderboard.ranking.scoring import wallet_stars
from signal_leaderboard.storage.models import (
    DEDUP_WINDOW_CAP,
    RECENT_SIGNAL_WINDOW_MS,
    SCAM_STATUS,
    TOKEN_WALLET_CAP,
    WALLET_SCORE_HISTORY,
    PartitionDocument,
    SignalEvent,
    SignalSummary,
    TokenRecord,
    WalletRecord,
    WalletTokenEntry,
)
from signal_leaderboard.storage.partition import PartitionDatabase

logger = logging.getLogger(__name__)

REPUTATION_WIN_THRESHOLD = 1.5
MAX_SCORE_VARIANCE = 16.0


def running_average(previous: float, count: int, value: float) -> float:
    """Average after adding ``value`` to ``count`` prior samples averaging ``previous``."""
    return (previous * count + value) / (count + 1)


def score_consistency(scores: list[float]) -> float:
    """Consistency (0-100) of a score history; 100 with fewer than two scores."""
    if len(scores) < 2:
        return 100.0
    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)
    return float(round(max(0.0, 100.0 - (variance / MAX_SCORE_VARIANCE) * 100.0)))


@dataclass(frozen=True)
class PriceUpdate:
    """Outcome of applying a price observation to a token."""

    address: str
    price: float
    multiplier: float
    peak_multiplier: float
    new_high: bool
    new_low: bool


@dataclass(frozen=True)
class WalletReputation:
    """Historical performance summary of a wallet."""

    win_rate: int
    average_peak: float
    total_entries: int
    wins: int
    stars: int
    is_new: bool


class EntityRepository:
    """Upsert/get operations against a loaded partition.

    Every mutation marks the partition dirty so the next ``save()`` writes it.

    Args:
        db: A loaded partition database.
    """

    def __init__(self, db: PartitionDatabase) -> None:
        self._db = db

    @property
    def partition(self) -> str:
        return self._db.partition

    @property
    def _doc(self) -> PartitionDocument:
        return self._db.document

    def _now(self) -> int:
        return self._db.clock()

    # Tokens

    def get_token(self, address: str) -> TokenRecord | None:
        return self._doc.tokens.get(address)

    def update_token(
        self, address: str, token: TokenRecord | None = None, **fields: Any
    ) -> TokenRecord:
        """Create or shallow-merge a token record."""
        current = token or self._doc.tokens.get(address) or TokenRecord()
        updated = replace(current, **fields) if fields else current
        self._doc.tokens[address] = updated
        self._db.mark_dirty()
        return updated

    def all_tokens(self) -> dict[str, TokenRecord]:
        return self._doc.tokens

    def get_token_peaks(self) -> dict[str, float]:
        """Peak multiplier per token address, derived on every call."""
        return {addr: token.peak_multiplier for addr, token in self._doc.tokens.items()}

    # Wallets

    def get_wallet(self, address: str) -> WalletRecord | None:
        return self._doc.wallets.get(address)

    def update_wallet(
        self, address: str, wallet: WalletRecord | None = None, **fields: Any
    ) -> WalletRecord:
        """Create or shallow-merge a wallet record."""
        current = wallet or self._doc.wallets.get(address) or WalletRecord()
        updated = replace(current, **fields) if fields else current
        self._doc.wallets[address] = updated
        self._db.mark_dirty()
        return updated

    def all_wallets(self) -> dict[str, WalletRecord]:
        return self._doc.wallets

    # Dedup window

    def is_signal_seen(self, key: str) -> bool:
        return key in self._doc.dedup_window

    def add_seen_signal(self, key: str) -> None:
        window = self._doc.dedup_window
        if key in window:
            window.remove(key)
        window.insert(0, key)
        del window[DEDUP_WINDOW_CAP:]
        self._db.mark_dirty()

    # Recent signals

    def recent_signals(self) -> list[SignalSummary]:
        return self._doc.recent_signals

    def add_recent_signal(self, entry: SignalSummary) -> None:
        cutoff = self._now() - RECENT_SIGNAL_WINDOW_MS
        self._doc.recent_signals.insert(0, entry)
        self._doc.recent_signals = [s for s in self._doc.recent_signals if s.time > cutoff]
        self._db.mark_dirty()

    # Composite operations

    def record_signal(self, event: SignalEvent) -> bool:
        """Apply a pre-scored signal to tokens, wallets, recent signals and periods.

        Returns:
            False if the signal key was already seen (nothing is changed).
        """
        if self.is_signal_seen(event.key):
            logger.debug("Skipping duplicate signal %s in %s", event.key, self.partition)
            return False

        now = self._now()
        self.add_seen_signal(event.key)
        token = self._upsert_signal_token(event, now)

        for participation in event.wallets:
            wallet = self._doc.wallets.get(participation.address)
            score = participation.entry_score
            entry = WalletTokenEntry(
                entry=event.price, score=score, time=event.event_time, peak=token.p_peak or None
            )
            if wallet is None:
                wallet = WalletRecord(
                    scnt=1,
                    avg_scr=score,
                    scores=[score],
                    consistency=100.0,
                    last_seen=now,
                    tags=list(participation.tags),
                    tokens={event.token_address: entry},
                )
            else:
                wallet.avg_scr = running_average(wallet.avg_scr, wallet.scnt, score)
                wallet.scnt += 1
                wallet.last_seen = now
                wallet.scores.append(score)
                del wallet.scores[:-WALLET_SCORE_HISTORY]
                wallet.consistency = score_consistency(wallet.scores)
                previous = wallet.tokens.get(event.token_address)
                if previous is not None and previous.peak is not None:
                    entry.peak = max(entry.peak or 0.0, previous.peak)
                wallet.tokens[event.token_address] = entry
                for tag in participation.tags:
                    if tag not in wallet.tags:
                        wallet.tags.append(tag)
            self.update_wallet(participation.address, wallet)

        self.add_recent_signal(
            SignalSummary(
                id=event.key,
                token=event.token_address,
                sym=event.symbol,
                time=event.event_time,
                price=event.price,
                avg_scr=event.average_score,
                wcnt=len(event.wallets),
            )
        )

        for window in self._doc.periods.values():
            window.observe(
                event.event_time,
                lambda bucket: bucket.add_signal(event.token_address, len(event.wallets)),
            )

        logger.info(
            "Recorded signal %s for %s in %s (%d wallets)",
            event.key,
            event.symbol,
            self.partition,
            len(event.wallets),
        )
        return True

    def _upsert_signal_token(self, event: SignalEvent, now: int) -> TokenRecord:
        token = self._doc.tokens.get(event.token_address)
        prefixes = [w.prefix for w in event.wallets]
        if token is None:
            token = TokenRecord(
                sym=event.symbol,
                p0=event.price,
                p_now=event.price,
                p_peak=event.price,
                p_low=event.price,
                peak_mult=1.0,
                scnt=1,
                avg_scr=event.average_score,
                first_seen=now,
                last_sig=event.event_time,
                wallets=list(dict.fromkeys(prefixes))[-TOKEN_WALLET_CAP:],
            )
        else:
            token.avg_scr = running_average(token.avg_scr, token.scnt, event.average_score)
            token.scnt += 1
            token.last_sig = event.event_time
            if event.price > 0 and (token.p_low <= 0 or event.price < token.p_low):
                token.p_low = event.price
            for prefix in prefixes:
                if prefix not in token.wallets:
                    token.wallets.append(prefix)
            del token.wallets[:-TOKEN_WALLET_CAP]

        if event.security is not None:
            token.sec = event.security
            if event.security == SCAM_STATUS:
                token.rugged = True
        return self.update_token(event.token_address, token)

    def apply_price(self, address: str, price: float) -> PriceUpdate | None:
        """Record a price observation, moving the peak up and the trough down.

        Returns:
            None when the token is unknown, has no entry price, or ``price`` is not positive.
        """
        token = self._doc.tokens.get(address)
        if token is None or token.p0 <= 0 or price <= 0:
            return None

        previous_high = token.p_peak or token.p0
        previous_low = token.p_low or token.p0
        new_high = price > previous_high
        new_low = price < previous_low
        token.p_now = price
        if new_high:
            token.p_peak = price
        if new_low:
            token.p_low = price
        self.update_token(address, token)

        for window in self._doc.periods.values():
            window.observe(
                self._now(), lambda bucket: bucket.add_multiplier(address, token.peak_multiplier)
            )

        return PriceUpdate(
            address=address,
            price=price,
            multiplier=token.multiplier,
            peak_multiplier=token.peak_multiplier,
            new_high=new_high,
            new_low=new_low,
        )

    def set_message_id(self, address: str, message_id: int, *, public: bool = False) -> None:
        """Remember the message a token was last posted as, for reply chaining."""
        token = self._doc.tokens.get(address)
        if token is not None:
            if public:
                token.public_msg_id = message_id
            else:
                token.last_msg_id = message_id
            self.update_token(address, token)

        for summary in self._doc.recent_signals:
            if summary.token != address:
                continue
            if public and summary.public_msg_id is None:
                summary.public_msg_id = message_id
            elif not public and summary.msg_id is None:
                summary.msg_id = message_id
            else:
                continue
            self._db.mark_dirty()
            break

    def get_message_id(self, address: str, *, public: bool = False) -> int | None:
        token = self._doc.tokens.get(address)
        if token is None:
            return None
        return token.public_msg_id if public else token.last_msg_id

    def mark_security(self, address: str, status: str) -> None:
        """Store a security status; ``SCAM`` flags the token as rugged."""
        token = self._doc.tokens.get(address)
        if token is None:
            return
        token.sec = status
        if status == SCAM_STATUS:
            token.rugged = True
        self.update_token(address, token)
        logger.info("Security of %s in %s set to %s", token.sym, self.partition, status)

    def get_wallet_reputation(self, address: str) -> WalletReputation:
        """Win rate (wins at 1.5x peak), average peak and star tier of a wallet."""
        wallet = self._doc.wallets.get(address)
        if wallet is None or not wallet.tokens:
            return WalletReputation(0, 0.0, 0, 0, 0, True)

        peaks = self.get_token_peaks()
        counted = [peaks[addr] for addr in wallet.tokens if peaks.get(addr, 0) > 0]
        if not counted:
            return WalletReputation(0, 0.0, len(wallet.tokens), 0, 0, True)

        wins = sum(1 for peak in counted if peak >= REPUTATION_WIN_THRESHOLD)
        return WalletReputation(
            win_rate=round(wins / len(counted) * 100),
            average_peak=round(sum(counted) / len(counted), 2),
            total_entries=len(wallet.tokens),
            wins=wins,
            stars=wallet_stars(wallet, peaks),
            is_new=False,
        )
