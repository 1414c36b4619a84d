"""Tests for legacy document migration."""

from __future__ import annotations

import pytest

from signal_leaderboard.storage.migration import (
    migrate_document,
    migrate_token,
    migrate_wallet,
    parse_legacy_text,
)
from signal_leaderboard.storage.models import SCHEMA_VERSION, SchemaError, TokenRecord

NOW = 1_770_000_000_000


class TestMigrateToken:
    """Tests for token field resolution."""

    def test_symbol_alias(self) -> None:
        token = migrate_token({"symbol": "ABC", "p0": 1.0}, now=NOW)
        assert token.sym == "ABC"

    def test_canonical_record_is_idempotent(self) -> None:
        original = TokenRecord(
            sym="ABC",
            p0=1.0,
            p_now=1.5,
            p_peak=3.0,
            p_low=0.5,
            peak_mult=3.0,
            scnt=4,
            avg_scr=0.7,
            first_seen=NOW - 1000,
            last_sig=NOW,
            wallets=["Wallet01"],
            last_msg_id=12,
        )
        once = migrate_token(original.to_dict(), now=NOW)
        twice = migrate_token(once.to_dict(), existing=once, now=NOW)
        assert once == original
        assert twice == original

    def test_current_price_derived_from_multiplier(self) -> None:
        token = migrate_token({"entryPrice": 2.0, "mult": 1.5}, now=NOW)
        assert token.p0 == 2.0
        assert token.p_now == 3.0
        assert token.peak_mult == 1.5

    def test_peak_never_regresses(self) -> None:
        existing = TokenRecord(sym="ABC", p0=1.0, p_peak=5.0, p_low=0.4, peak_mult=5.0)
        token = migrate_token(
            {"sym": "ABC", "p0": 1.0, "pHigh": 2.0, "lowPrice": 0.8}, existing=existing, now=NOW
        )
        assert token.p_peak == 5.0
        assert token.p_low == 0.4
        assert token.peak_mult == 5.0

    def test_peak_includes_current_price(self) -> None:
        token = migrate_token({"p0": 1.0, "pNow": 4.0, "pPeak": 2.0}, now=NOW)
        assert token.p_peak == 4.0
        assert token.peak_multiplier == 4.0

    def test_peak_floor(self) -> None:
        token = migrate_token({"p0": 1.0, "pNow": 1.0}, now=NOW, peak_floor=2.5)
        assert token.peak_mult == 2.5

    def test_defaults(self) -> None:
        token = migrate_token({}, now=NOW)
        assert token.sym == "???"
        assert token.first_seen == NOW
        assert token.last_sig == NOW
        assert token.peak_mult == 1.0


class TestMigrateWallet:
    """Tests for wallet field resolution."""

    def test_legacy_token_list(self) -> None:
        wallet = migrate_wallet(
            {"signalCount": 3, "avgScore": 0.5, "toks": [["Tok12345", NOW, 0.01, None]]},
            now=NOW,
        )
        assert wallet.scnt == 3
        assert wallet.avg_scr == 0.5
        assert wallet.tokens["Tok12345"].entry == 0.01
        assert wallet.tokens["Tok12345"].time == NOW

    def test_score_history_capped(self) -> None:
        wallet = migrate_wallet({"scores": list(range(15))}, now=NOW)
        assert wallet.scores == [float(s) for s in range(5, 15)]


class TestLegacyText:
    """Tests for inline-text payloads."""

    def test_hash_line_dropped(self) -> None:
        assert parse_legacy_text('#sol-db abc123\n{"tokens": {}}') == {"tokens": {}}

    def test_plain_json(self) -> None:
        assert parse_legacy_text('{"version": 3}') == {"version": 3}

    @pytest.mark.parametrize("text", ["#hash\nnot json", "#hash\n[1, 2]"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(SchemaError):
            parse_legacy_text(text)


class TestMigrateDocument:
    """Tests for whole-document migration."""

    def test_tracked_token_list(self) -> None:
        doc = migrate_document(
            {
                "version": 4,
                "trackedTokens": [
                    {"addr": "TokenA", "symbol": "AAA", "p0": 1.0},
                    {"symbol": "NOADDR"},
                ],
                "lastSigs": ["old", "new"],
            },
            partition="sol",
            now=NOW,
        )
        assert doc.schema_version == SCHEMA_VERSION
        assert list(doc.tokens) == ["TokenA"]
        assert doc.tokens["TokenA"].sym == "AAA"
        assert doc.dedup_window == ["new", "old"]

    def test_token_peaks_by_prefix(self) -> None:
        doc = migrate_document(
            {
                "tokens": {"TokenAbcdefgh": {"p0": 1.0}},
                "tokenPeaks": {"TokenAbc": {"peak": 3.0}},
            },
            partition="sol",
            now=NOW,
        )
        assert doc.tokens["TokenAbcdefgh"].peak_multiplier == 3.0

    def test_malformed_entries_are_skipped(self) -> None:
        doc = migrate_document(
            {
                "tokens": {"Good": {"p0": 1.0}, "Bad": {"p0": "not a number"}},
                "wallets": {"W1": {"scnt": 2}, "W2": "garbage"},
                "recentSignals": [{"id": "x"}],
            },
            partition="eth",
            now=NOW,
        )
        assert list(doc.tokens) == ["Good"]
        assert list(doc.wallets) == ["W1"]
        assert doc.recent_signals == []

    @pytest.mark.parametrize(
        "data",
        [
            {"version": 4, "tokens": {}, "recentSignals": 5},
            {"tokens": 5, "wallets": "x", "tokenPeaks": 1},
            {"version": 3, "lastSigs": 7},
            {"version": 5, "dedupWindow": 7},
        ],
    )
    def test_non_list_containers_are_ignored(self, data: dict) -> None:
        doc = migrate_document(data, partition="sol", now=NOW)
        assert doc.tokens == {}
        assert doc.recent_signals == []
        assert doc.dedup_window == []
        assert doc.schema_version == SCHEMA_VERSION

    def test_dedup_window_capped(self) -> None:
        doc = migrate_document(
            {"version": 5, "dedupWindow": [f"k{i}" for i in range(300)]}, partition="sol", now=NOW
        )
        assert len(doc.dedup_window) == 200
        assert doc.dedup_window[0] == "k0"
