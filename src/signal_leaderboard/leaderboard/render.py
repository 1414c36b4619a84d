"""HTML rendering of leaderboard views for channel messages."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from html import escape

from signal_leaderboard.config import VARIANT_PUBLIC
from signal_leaderboard.leaderboard.selection import HallOfFameEntry, TokenRow, WalletRow
from signal_leaderboard.leaderboard.stats import GainsStats

EXPLORER_ADDRESS_URLS = {
    "sol": "https://solscan.io/account/{address}",
    "eth": "https://etherscan.io/address/{address}",
    "bsc": "https://bscscan.com/address/{address}",
    "base": "https://basescan.org/address/{address}",
}

SEPARATOR = "-" * 25

# Score colour bands over [-2, 2]
SCORE_BANDS: tuple[tuple[float, str], ...] = (
    (1.5, "🔵"),
    (0.5, "🟢"),
    (-0.5, "⚪️"),
    (-1.5, "🟠"),
)
POOR_SCORE_EMOJI = "🔴"


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an address to ``abcd...wxyz`` format."""
    if len(address) < chars * 2 + 2:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def score_emoji(score: float) -> str:
    for floor, emoji in SCORE_BANDS:
        if score >= floor:
            return emoji
    return POOR_SCORE_EMOJI


def format_multiplier(mult: float) -> str:
    if mult >= 100:
        return f"{round(mult)}x"
    if mult >= 10:
        return f"{mult:.1f}x"
    return f"{mult:.2f}x"


def format_signed(value: float) -> str:
    return f"+{value:.2f}" if value >= 0 else f"{value:.2f}"


def message_link(channel: str | None, message_id: int | None) -> str | None:
    """Build a t.me link to a message in a private channel."""
    if not channel or not message_id:
        return None
    clean = channel.removeprefix("-100")
    return f"https://t.me/c/{clean}/{message_id}"


def render_token_view(
    partition: str,
    rows: Sequence[TokenRow],
    *,
    variant: str,
    channel: str | None,
    period: str,
) -> str:
    lines = [f"<b>{escape(partition.upper())} Top Tokens ({escape(period)})</b>", SEPARATOR]
    if not rows:
        lines.append("<i>No tokens tracked yet</i>")
        return "\n".join(lines)
    public = variant == VARIANT_PUBLIC
    for rank, row in enumerate(rows, start=1):
        link = message_link(channel, row.public_msg_id if public else row.last_msg_id)
        sym = escape(row.sym)
        display = f'<a href="{link}">{sym}</a>' if link else f"<b>{sym}</b>"
        lines.append(
            f"<code>{rank}. | {format_multiplier(row.peak_multiplier)} | {row.scnt} sig | "
            f"{score_emoji(row.trend_score * 2)} {format_signed(row.trend_score)} | </code>{display}"
        )
    return "\n".join(lines)


def render_wallet_view(
    partition: str,
    rows: Sequence[WalletRow],
    *,
    variant: str,
) -> str:
    lines = [f"<b>{escape(partition.upper())} 7D Wallet Leaderboard</b>", SEPARATOR]
    if not rows:
        lines.append("<i>No wallets tracked yet</i>")
        return "\n".join(lines)
    public = variant == VARIANT_PUBLIC
    explorer = EXPLORER_ADDRESS_URLS.get(partition)
    for rank, row in enumerate(rows, start=1):
        short = escape(truncate_address(row.address))
        if public or explorer is None:
            display = short
        else:
            display = f'<a href="{explorer.format(address=escape(row.address))}">{short}</a>'
        roi = round((row.average_peak - 1) * 100)
        stars = "★" * row.stars
        lines.append(
            f"<code>{rank}. | {roi:+d}% | {row.win_rate}% | "
            f"{score_emoji(row.avg_scr)} {format_signed(row.avg_scr)} ({row.scnt}) | </code>"
            f"{display} {stars}".rstrip()
        )
    if not public:
        lines.append("")
        lines.append("<i>Tap wallet to view on explorer</i>")
    return "\n".join(lines)


def render_summary(
    rows: Sequence[TokenRow],
    stats: GainsStats,
    view_links: Mapping[str, Mapping[str, int | None]],
    *,
    channel: str | None,
) -> str:
    """Cross-partition summary with gains statistics and links to every partition view."""
    lines = ["<b>Stats & Info</b>", ""]
    lines.append(
        f"<b>Gains:</b> {stats.total} calls | hit rate {stats.hit_rate}% | "
        f"sum x{stats.gain_sum:.1f} | median {format_multiplier(stats.median)} | "
        f"avg {format_multiplier(stats.average)}"
    )
    lines.append("")
    lines.append("<b>Leaderboards:</b>")
    for partition, kinds in view_links.items():
        parts = []
        for kind in ("tokens", "wallets"):
            link = message_link(channel, kinds.get(kind))
            label = kind.capitalize()
            parts.append(f'<a href="{link}">{label}</a>' if link else f"<i>{label}</i>")
        lines.append(f"<b>{escape(partition.upper())}:</b> {' • '.join(parts)}")
    lines.append("")
    lines.append("<b>Top calls:</b>")
    if not rows:
        lines.append("<i>No calls yet</i>")
    for rank, row in enumerate(rows, start=1):
        lines.append(
            f"<code>{rank}. | {format_multiplier(row.peak_multiplier)} | "
            f"{escape(row.partition)} | </code>{escape(row.sym)}"
        )
    return "\n".join(lines)


def render_hall_of_fame(entries: Sequence[HallOfFameEntry]) -> str:
    lines = ["<b>Hall of Fame</b>", SEPARATOR]
    if not entries:
        lines.append("<i>No 2x calls yet</i>")
    for rank, entry in enumerate(entries, start=1):
        lines.append(
            f"<code>{rank}. | {format_multiplier(entry.peak_multiplier)} | "
            f"{escape(entry.partition)} | </code>{escape(entry.sym)}"
        )
    return "\n".join(lines)
