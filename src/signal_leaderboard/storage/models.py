"""Document records persisted in a partition.

Every record serializes to the compact JSON keys used on the wire
(``sym``, ``p0``, ``pNow`` ...). Timestamps are integer epoch milliseconds.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from signal_leaderboard.storage.rolling import (
    PeriodStats,
    RollingWindow,
    new_period_windows,
    period_windows_from_dict,
    period_windows_to_dict,
)

SCHEMA_VERSION = 6

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

DEDUP_WINDOW_CAP = 200
RECENT_SIGNAL_WINDOW_MS = 7 * DAY_MS
WALLET_SCORE_HISTORY = 10
TOKEN_WALLET_CAP = 50
WALLET_PREFIX_LENGTH = 8

UNKNOWN_SYMBOL = "???"
SCAM_STATUS = "SCAM"


class SchemaError(Exception):
    """Raised when a stored document is malformed or has an unknown layout."""


class ConcurrentModificationError(Exception):
    """Raised when the stored pointer changed between load and save."""

    def __init__(self, document: str, expected: int | None, found: int | None) -> None:
        super().__init__(
            f"Pointer of {document} changed since load (expected={expected}, found={found})"
        )
        self.document = document
        self.expected = expected
        self.found = found


def now_ms() -> int:
    return int(time.time() * 1000)


def _float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    return float(value)


def _int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    return int(value)


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _mapping(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SchemaError(f"{name} must be an object, got {type(value).__name__}")
    return value


@dataclass
class TokenRecord:
    """A token seen in at least one signal."""

    sym: str = UNKNOWN_SYMBOL
    p0: float = 0.0
    p_now: float = 0.0
    p_peak: float = 0.0
    p_low: float = 0.0
    peak_mult: float = 1.0
    scnt: int = 0
    avg_scr: float = 0.0
    first_seen: int = 0
    last_sig: int = 0
    rugged: bool = False
    wallets: list[str] = field(default_factory=list)
    last_msg_id: int | None = None
    public_msg_id: int | None = None
    sec: str | None = None

    @property
    def multiplier(self) -> float:
        """Current price over entry price; 1.0 when no entry price is known."""
        if self.p0 <= 0:
            return 1.0
        return self.p_now / self.p0

    @property
    def peak_multiplier(self) -> float:
        price_peak = self.p_peak / self.p0 if self.p0 > 0 else 0.0
        return max(price_peak, self.peak_mult, self.multiplier)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sym": self.sym,
            "p0": self.p0,
            "pNow": self.p_now,
            "pPeak": self.p_peak,
            "pLow": self.p_low,
            "peakMult": self.peak_mult,
            "scnt": self.scnt,
            "avgScr": self.avg_scr,
            "firstSeen": self.first_seen,
            "lastSig": self.last_sig,
            "rugged": self.rugged,
            "wallets": list(self.wallets),
            "lastMsgId": self.last_msg_id,
            "publicMsgId": self.public_msg_id,
        }
        if self.sec is not None:
            data["sec"] = self.sec
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenRecord:
        return cls(
            sym=str(data.get("sym") or UNKNOWN_SYMBOL),
            p0=_float(data.get("p0")),
            p_now=_float(data.get("pNow")),
            p_peak=_float(data.get("pPeak")),
            p_low=_float(data.get("pLow")),
            peak_mult=_float(data.get("peakMult"), 1.0),
            scnt=_int(data.get("scnt")),
            avg_scr=_float(data.get("avgScr")),
            first_seen=_int(data.get("firstSeen")),
            last_sig=_int(data.get("lastSig")),
            rugged=bool(data.get("rugged", False)),
            wallets=[str(w) for w in data.get("wallets") or []],
            last_msg_id=_optional_int(data.get("lastMsgId")),
            public_msg_id=_optional_int(data.get("publicMsgId")),
            sec=data.get("sec"),
        )


@dataclass
class WalletTokenEntry:
    """A wallet's participation in one token."""

    entry: float
    score: float
    time: int
    peak: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"entry": self.entry, "peak": self.peak, "score": self.score, "time": self.time}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WalletTokenEntry:
        peak = data.get("peak")
        return cls(
            entry=_float(data.get("entry")),
            score=_float(data.get("score")),
            time=_int(data.get("time")),
            peak=None if peak is None else float(peak),
        )


@dataclass
class WalletRecord:
    """A wallet that participated in at least one signal."""

    scnt: int = 0
    avg_scr: float = 0.0
    scores: list[float] = field(default_factory=list)
    consistency: float | None = None
    last_seen: int = 0
    tags: list[str] = field(default_factory=list)
    tokens: dict[str, WalletTokenEntry] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scnt": self.scnt,
            "avgScr": self.avg_scr,
            "scores": list(self.scores),
            "consistency": self.consistency,
            "lastSeen": self.last_seen,
            "tags": list(self.tags),
            "tokens": {addr: entry.to_dict() for addr, entry in self.tokens.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WalletRecord:
        consistency = data.get("consistency")
        return cls(
            scnt=_int(data.get("scnt")),
            avg_scr=_float(data.get("avgScr")),
            scores=[float(s) for s in data.get("scores") or []],
            consistency=None if consistency is None else float(consistency),
            last_seen=_int(data.get("lastSeen")),
            tags=[str(t) for t in data.get("tags") or []],
            tokens={
                addr: WalletTokenEntry.from_dict(entry)
                for addr, entry in _mapping(data.get("tokens"), "wallet.tokens").items()
            },
        )


@dataclass
class SignalSummary:
    """Lightweight recent-activity entry."""

    id: str
    token: str
    sym: str
    time: int
    price: float
    avg_scr: float
    wcnt: int = 0
    msg_id: int | None = None
    public_msg_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "token": self.token,
            "sym": self.sym,
            "time": self.time,
            "price": self.price,
            "avgScr": self.avg_scr,
            "wcnt": self.wcnt,
            "msgId": self.msg_id,
            "publicMsgId": self.public_msg_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SignalSummary:
        return cls(
            id=str(data["id"]),
            token=str(data["token"]),
            sym=str(data.get("sym") or UNKNOWN_SYMBOL),
            time=_int(data.get("time")),
            price=_float(data.get("price")),
            avg_scr=_float(data.get("avgScr")),
            wcnt=_int(data.get("wcnt")),
            msg_id=_optional_int(data.get("msgId")),
            public_msg_id=_optional_int(data.get("publicMsgId")),
        )


@dataclass
class PartitionDocument:
    """The whole persisted state of one partition."""

    partition: str
    schema_version: int = SCHEMA_VERSION
    updated_at: int = 0
    dedup_window: list[str] = field(default_factory=list)
    tokens: dict[str, TokenRecord] = field(default_factory=dict)
    wallets: dict[str, WalletRecord] = field(default_factory=dict)
    recent_signals: list[SignalSummary] = field(default_factory=list)
    periods: dict[str, RollingWindow[PeriodStats]] = field(default_factory=new_period_windows)

    @classmethod
    def empty(cls, partition: str) -> PartitionDocument:
        return cls(partition=partition, updated_at=now_ms())

    def to_dict(self) -> dict[str, Any]:
        return {
            "partition": self.partition,
            "schemaVersion": self.schema_version,
            "updatedAt": self.updated_at,
            "dedupWindow": list(self.dedup_window),
            "tokens": {addr: token.to_dict() for addr, token in self.tokens.items()},
            "wallets": {addr: wallet.to_dict() for addr, wallet in self.wallets.items()},
            "recentSignals": [s.to_dict() for s in self.recent_signals],
            "periods": period_windows_to_dict(self.periods),
        }

    @classmethod
    def from_dict(cls, data: Any, *, partition: str) -> PartitionDocument:
        """Parse a current-schema document.

        Raises:
            SchemaError: If the document is not an object, carries another
                schema version, or any record is malformed.
        """
        if not isinstance(data, dict):
            raise SchemaError("Partition document must be a JSON object")
        if data.get("schemaVersion") != SCHEMA_VERSION:
            raise SchemaError(f"Unsupported schemaVersion: {data.get('schemaVersion')!r}")
        try:
            return cls(
                partition=str(data.get("partition") or partition),
                schema_version=SCHEMA_VERSION,
                updated_at=_int(data.get("updatedAt")),
                dedup_window=[str(k) for k in data.get("dedupWindow") or []][:DEDUP_WINDOW_CAP],
                tokens={
                    addr: TokenRecord.from_dict(token)
                    for addr, token in _mapping(data.get("tokens"), "tokens").items()
                },
                wallets={
                    addr: WalletRecord.from_dict(wallet)
                    for addr, wallet in _mapping(data.get("wallets"), "wallets").items()
                },
                recent_signals=[SignalSummary.from_dict(s) for s in data.get("recentSignals") or []],
                periods=period_windows_from_dict(_mapping(data.get("periods"), "periods")),
            )
        except SchemaError:
            raise
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise SchemaError(f"Malformed partition document: {e}") from e


@dataclass(frozen=True)
class WalletParticipation:
    """A wallet's part in an incoming signal, with its precomputed entry score."""

    address: str
    entry_score: float = 0.0
    tags: tuple[str, ...] = ()

    @property
    def prefix(self) -> str:
        return self.address[:WALLET_PREFIX_LENGTH]


@dataclass(frozen=True)
class SignalEvent:
    """A pre-scored trading signal ready to be recorded."""

    batch_id: str
    batch_index: int
    token_address: str
    symbol: str
    price: float
    event_time: int
    average_score: float
    wallets: tuple[WalletParticipation, ...] = ()
    security: str | None = None

    @property
    def key(self) -> str:
        """Dedup key of the signal."""
        return signal_key(self.batch_id, self.batch_index)


def signal_key(batch_id: str, batch_index: int) -> str:
    return f"{batch_id}_{batch_index}"
