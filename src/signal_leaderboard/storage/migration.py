"""Legacy document migration.

Older layouts stored the partition as inline text (a hash line followed by
JSON) or as a file without the current ``schemaVersion`` marker, under a
variety of field names. Each canonical field is resolved from an ordered
list of accessors; the first one yielding a non-null value wins. Peak and
trough fields are merged with any already-migrated value so migration never
regresses recorded extremes, and migrating a canonical record is a no-op.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from typing import Any

from signal_leaderboard.storage.models import (
    DEDUP_WINDOW_CAP,
    SCHEMA_VERSION,
    TOKEN_WALLET_CAP,
    UNKNOWN_SYMBOL,
    WALLET_SCORE_HISTORY,
    PartitionDocument,
    SchemaError,
    SignalSummary,
    TokenRecord,
    WalletRecord,
    WalletTokenEntry,
)

logger = logging.getLogger(__name__)

Accessor = Callable[[dict[str, Any]], Any]


def key(name: str) -> Accessor:
    return lambda data: data.get(name)


def _derived_price(data: dict[str, Any]) -> Any:
    p0, mult = data.get("p0") or data.get("entryPrice"), data.get("mult") or data.get("multiplier")
    if p0 is None or mult is None:
        return None
    return float(p0) * float(mult)


TOKEN_ALIASES: dict[str, Sequence[Accessor]] = {
    "sym": (key("sym"), key("symbol")),
    "p0": (key("p0"), key("entryPrice")),
    "p_now": (key("pNow"), key("currentPrice"), key("pxNow"), _derived_price),
    "p_peak": (key("pPeak"), key("peakPrice"), key("pHigh"), key("pxHigh")),
    "p_low": (key("pLow"), key("troughPrice"), key("lowPrice")),
    "peak_mult": (key("peakMult"), key("peakMultiplier"), key("mult"), key("multiplier")),
    "scnt": (key("scnt"), key("signalCount")),
    "avg_scr": (key("avgScr"), key("avgScore"), key("scr")),
    "first_seen": (key("firstSeen"), key("firstSeenAt"), key("first")),
    "last_sig": (key("lastSig"), key("lastSignal"), key("lastSignalAt"), key("t0")),
    "rugged": (key("rugged"),),
    "wallets": (key("wallets"), key("wals")),
    "last_msg_id": (key("lastMsgId"), key("msgId")),
    "public_msg_id": (key("publicMsgId"),),
    "sec": (key("sec"), key("security")),
}

WALLET_ALIASES: dict[str, Sequence[Accessor]] = {
    "scnt": (key("scnt"), key("signalCount")),
    "avg_scr": (key("avgScr"), key("avgScore")),
    "scores": (key("scores"), key("scrs")),
    "consistency": (key("consistency"),),
    "last_seen": (key("lastSeen"), key("last"), key("lastSeenAt")),
    "tags": (key("tags"),),
    "tokens": (key("tokens"), key("toks")),
}


def resolve(data: dict[str, Any], accessors: Sequence[Accessor], default: Any = None) -> Any:
    """Return the first non-null value produced by ``accessors``."""
    for accessor in accessors:
        try:
            value = accessor(data)
        except (TypeError, ValueError, KeyError):
            continue
        if value is not None:
            return value
    return default


def _max_positive(*values: float | None) -> float:
    present = [v for v in values if v is not None and v > 0]
    return max(present) if present else 0.0


def _min_positive(*values: float | None) -> float:
    present = [v for v in values if v is not None and v > 0]
    return min(present) if present else 0.0


def _opt_float(value: Any) -> float | None:
    return None if value is None else float(value)


def migrate_token(
    data: dict[str, Any],
    existing: TokenRecord | None = None,
    *,
    now: int,
    peak_floor: float | None = None,
) -> TokenRecord:
    """Map a legacy (or canonical) token entry to a ``TokenRecord``."""

    def field_(name: str, default: Any = None) -> Any:
        return resolve(data, TOKEN_ALIASES[name], default)

    p0 = float(field_("p0", 0.0))
    p_now = float(field_("p_now", p0))
    wallets = [str(w) for w in field_("wallets", [])][-TOKEN_WALLET_CAP:]
    last_msg_id = field_("last_msg_id")
    public_msg_id = field_("public_msg_id")

    token = TokenRecord(
        sym=str(field_("sym") or UNKNOWN_SYMBOL),
        p0=p0,
        p_now=p_now,
        p_peak=_max_positive(_opt_float(field_("p_peak")), p_now),
        p_low=_min_positive(_opt_float(field_("p_low"))),
        peak_mult=max(float(field_("peak_mult", 1.0)), peak_floor or 0.0, 1.0),
        scnt=int(field_("scnt", 1)),
        avg_scr=float(field_("avg_scr", 0.0)),
        first_seen=int(field_("first_seen", now)),
        last_sig=int(field_("last_sig", now)),
        rugged=bool(field_("rugged", False)),
        wallets=wallets,
        last_msg_id=None if last_msg_id is None else int(last_msg_id),
        public_msg_id=None if public_msg_id is None else int(public_msg_id),
        sec=field_("sec"),
    )
    if existing is not None:
        token.p_peak = _max_positive(token.p_peak, existing.p_peak)
        token.p_low = _min_positive(token.p_low, existing.p_low)
        token.peak_mult = max(token.peak_mult, existing.peak_mult)
    return token


def _wallet_tokens(raw: Any) -> dict[str, WalletTokenEntry]:
    if isinstance(raw, dict):
        return {addr: WalletTokenEntry.from_dict(entry) for addr, entry in raw.items()}
    tokens: dict[str, WalletTokenEntry] = {}
    # [tokenPrefix, timestamp, entryPrice, outcome]
    for item in raw or []:
        if isinstance(item, (list, tuple)) and len(item) >= 3:
            tokens[str(item[0])] = WalletTokenEntry(
                entry=float(item[2] or 0.0), score=0.0, time=int(item[1] or 0)
            )
    return tokens


def migrate_wallet(
    data: dict[str, Any],
    existing: WalletRecord | None = None,
    *,
    now: int,
) -> WalletRecord:
    """Map a legacy (or canonical) wallet entry to a ``WalletRecord``."""

    def field_(name: str, default: Any = None) -> Any:
        return resolve(data, WALLET_ALIASES[name], default)

    consistency = field_("consistency")
    wallet = WalletRecord(
        scnt=int(field_("scnt", 1)),
        avg_scr=float(field_("avg_scr", 0.0)),
        scores=[float(s) for s in field_("scores", [])][-WALLET_SCORE_HISTORY:],
        consistency=None if consistency is None else float(consistency),
        last_seen=int(field_("last_seen", now)),
        tags=[str(t) for t in field_("tags", [])],
        tokens=_wallet_tokens(field_("tokens")),
    )
    if existing is not None:
        wallet.last_seen = max(wallet.last_seen, existing.last_seen)
        for addr, entry in existing.tokens.items():
            merged = wallet.tokens.setdefault(addr, entry)
            if merged is not entry and entry.peak is not None:
                merged.peak = max(merged.peak or 0.0, entry.peak)
    return wallet


def parse_legacy_text(text: str) -> dict[str, Any]:
    """Parse an inline-text document: an optional hash line followed by JSON.

    Raises:
        SchemaError: If the payload is not a JSON object.
    """
    lines = text.split("\n")
    if lines and not lines[0].lstrip().startswith("{"):
        lines = lines[1:]
    try:
        data = json.loads("\n".join(lines))
    except ValueError as e:
        raise SchemaError(f"Legacy text is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise SchemaError("Legacy document must be a JSON object")
    return data


def _legacy_tokens(data: dict[str, Any]) -> dict[str, dict[str, Any]]:
    raw = data.get("tokens")
    if raw is None:
        raw = data.get("trackedTokens")
    if isinstance(raw, dict):
        return {str(addr): entry for addr, entry in raw.items() if isinstance(entry, dict)}
    if isinstance(raw, list):
        return {
            str(entry["addr"]): entry
            for entry in raw
            if isinstance(entry, dict) and entry.get("addr")
        }
    return {}


def _legacy_dedup(data: dict[str, Any]) -> list[str]:
    if "dedupWindow" in data:
        keys = list(data.get("dedupWindow") or [])
    else:
        keys = list(data.get("lastSigs") or [])
        # Before file storage, keys were appended rather than pushed to the front.
        if int(data.get("version") or 0) < 5:
            keys.reverse()
    return [str(k) for k in keys][:DEDUP_WINDOW_CAP]


def _peak_floor(peaks: dict[str, Any], address: str) -> float | None:
    # Keyed by full address or by 8-char prefix; values are numbers or {"peak": ...}.
    value = peaks.get(address)
    if value is None:
        value = peaks.get(address[:8])
    if isinstance(value, dict):
        value = value.get("peak")
    return None if value is None else float(value)


def migrate_document(
    data: dict[str, Any],
    *,
    partition: str,
    now: int,
    base: PartitionDocument | None = None,
) -> PartitionDocument:
    """Migrate a legacy document into the current schema.

    Never raises: entries that cannot be migrated are skipped and logged.
    When ``base`` is given, its records are merged rather than overwritten.
    """
    doc = base or PartitionDocument.empty(partition)
    doc.partition = partition
    doc.schema_version = SCHEMA_VERSION

    try:
        if not doc.dedup_window:
            doc.dedup_window = _legacy_dedup(data)
    except (TypeError, ValueError) as e:
        logger.warning("Skipping legacy dedup window for %s: %s", partition, e)

    peaks = data.get("tokenPeaks") if isinstance(data.get("tokenPeaks"), dict) else {}

    for addr, entry in _legacy_tokens(data).items():
        try:
            doc.tokens[addr] = migrate_token(
                entry,
                doc.tokens.get(addr),
                now=now,
                peak_floor=_peak_floor(peaks, addr),
            )
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            logger.warning("Skipping legacy token %s in %s: %s", addr, partition, e)

    wallets = data.get("wallets")
    if isinstance(wallets, dict):
        for addr, entry in wallets.items():
            if not isinstance(entry, dict):
                continue
            try:
                doc.wallets[addr] = migrate_wallet(entry, doc.wallets.get(addr), now=now)
            except (TypeError, ValueError, KeyError, AttributeError) as e:
                logger.warning("Skipping legacy wallet %s in %s: %s", addr, partition, e)

    recent = data.get("recentSignals")
    for raw in recent if isinstance(recent, list) else []:
        try:
            doc.recent_signals.append(SignalSummary.from_dict(raw))
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            logger.warning("Skipping legacy recent signal in %s: %s", partition, e)

    logger.info(
        "Migrated %s: %d tokens, %d wallets, %d dedup keys",
        partition,
        len(doc.tokens),
        len(doc.wallets),
        len(doc.dedup_window),
    )
    return doc
