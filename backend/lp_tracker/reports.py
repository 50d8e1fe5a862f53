"""HTML message rendering for previews and portfolio reports."""

from __future__ import annotations

from datetime import datetime
from html import escape

from .domain.entities import (
    AccountAnalysis,
    AccountSnapshot,
    PortfolioSummary,
    SaveResult,
    estimate_daily_earnings,
)
from .schemas import ExtractionRecord

DIVIDER = "━━━━━━━━━━━━━━━━━━━━━━"

START_TEXT = (
    "🚀 <b>LP Tracker Bot ready!</b>\n\n"
    "⚡ Paste your LP dashboard and I'll keep track of balance, points and fees for up to 10 accounts.\n"
    "💰 Check day-over-day growth and unclaimed yield at a glance.\n\n"
    "Tap <b>📊 Add Account</b> to get started."
)

HELP_TEXT = (
    "❓ <b>How to use the bot</b>\n\n"
    "1. Tap <b>📊 Add Account</b>\n"
    "2. Paste the text from your dashboard, or send a screenshot\n"
    "3. The AI reads the data and shows a preview\n"
    "4. Pick the account number (1-10) to save it under\n\n"
    "Use <b>👥 List Accounts</b> for per-account details, <b>💰 Summary</b> for totals "
    "and <b>📈 Analyze</b> for growth against the previous day.\n"
    "Send /cancel at any time to drop unsaved data."
)

HISTORY_TEXT = (
    "📅 <b>Daily updates and growth</b>\n\n"
    "1. Tap <b>📊 Add Account</b>\n"
    "2. Paste today's dashboard data\n"
    "3. Save it to the same account number\n\n"
    "One snapshot is kept per account per day; saving again on the same day replaces it. "
    "<b>📈 Analyze</b> compares today's numbers with the latest earlier snapshot."
)

INPUT_PROMPT_TEXT = (
    "Paste your LP dashboard data or send a screenshot. "
    "I'll detect the account and its numbers automatically."
)

DELETE_CONFIRM_TEXT = (
    "⚠️ <b>CONFIRM DELETION</b>\n\n"
    "Delete ALL of your accounts, positions and history? This cannot be undone."
)

EMPTY_ACCOUNTS_TEXT = "📭 You have no accounts yet. Use 📊 Add Account to start."


def format_currency(value: float | None) -> str:
    amount = float(value or 0.0)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_number(value: float | None) -> str:
    return f"{float(value or 0.0):,.2f}"


def format_optional(value: float | None, formatter=format_number) -> str:
    return "n/a" if value is None else formatter(value)


def format_apr(value: float | None) -> str:
    return "n/a" if value is None else f"{format_number(value)}%"


def format_delta(value: float, formatter=format_number) -> str:
    if value == 0:
        return "➖"
    if value > 0:
        return f"(📈 +{formatter(value)})"
    return f"(📉 -{formatter(abs(value))})"


def render_preview(record: ExtractionRecord, detected_slot: int | None) -> str:
    slot = detected_slot or 1
    name = record.account_name or f"Account {slot}"
    lines = [f"📊 <b>ANALYSIS {escape(name.upper())}</b>", DIVIDER, "", "💰 <b>Portfolio Overview</b>"]

    balance = format_currency(record.balance) if record.balance is not None else "<i>(not detected)</i>"
    lines.append(f"├ Balance: {balance}")
    points_line = f"├ Total Points: {format_number(record.total_points)}"
    if record.points_change:
        points_line += f" ({record.points_change:+,.2f})"
    lines.append(points_line)
    if record.rank:
        lines.append(f"├ Rank: {escape(record.rank)}")
    lines.append(f"├ Total Fees: {format_currency(record.total_fees)}")
    if record.fees_today:
        lines.append(f"├ Fees Today: {format_currency(record.fees_today)}")
    lines.append(f"└ Pending Yield: {format_currency(record.pending_yield)}")
    lines.append("")

    positions = record.positions or []
    if positions:
        lines.append("📈 <b>Active Positions</b>")
        lines.append("")
        for index, position in enumerate(positions, start=1):
            marker = "✅" if position.in_range else "⚠️"
            lines.append(f"{index}. {escape(position.pair or '')} {marker}")
            lines.append(f"├ Position: {format_optional(position.position_size, format_currency)}")
            lines.append(f"├ APR: {format_apr(position.apr)}")
            if position.range:
                lines.append(f"├ Range: {escape(position.range)}")
            if position.current_price is not None:
                lines.append(f"├ Current: {position.current_price:g}")
            lines.append(f"└ Unclaimed: {format_currency(position.unclaimed)}")
            lines.append("")

    estimated = sum(
        estimate_daily_earnings(p.position_size, p.apr)
        for p in positions
        if p.position_size is not None and p.apr is not None
    )
    all_in_range = all(p.in_range for p in positions)
    lines.append("📊 <b>Performance Metrics</b>")
    lines.append(f"├ Est. Daily Earnings: {format_currency(estimated)}")
    lines.append(f"└ All In Range: {'Yes ✅' if all_in_range else 'No ⚠️'}")
    lines.append("")

    pending = record.pending_yield or 0.0
    advice = f"Yield available to claim ({format_currency(pending)})" if pending > 0 else "Hold your positions"
    lines.extend(["💡 <b>Recommendation</b>", f"• {advice}", DIVIDER, ""])

    if detected_slot:
        lines.append(f"🔎 Detected <b>Account {detected_slot}</b>.")
    lines.append("<b>Choose the account number to save to:</b>")
    return "\n".join(lines)


def render_saved(result: SaveResult) -> str:
    account = result.account
    lines = [f"✅ Saved to <b>{escape(account.display_name)}</b> (slot {account.slot})!"]
    balance_line = f"├ Balance: {format_currency(account.balance)}"
    if not result.created:
        balance_line += f" {format_delta(result.balance_delta, format_currency)}"
    lines.append(balance_line)
    lines.append(f"├ Points: {format_number(account.total_points)}")
    lines.append(f"└ Pending Yield: {format_currency(account.pending_yield)}")
    return "\n".join(lines)


def render_summary(summary: PortfolioSummary) -> str:
    if summary.account_count == 0:
        return EMPTY_ACCOUNTS_TEXT
    lines = [
        "💰 <b>PORTFOLIO SUMMARY</b>",
        DIVIDER,
        "",
        f"📊 Accounts: {summary.account_count}",
        "",
        "💵 <b>Total Portfolio</b>",
        f"├ Balance: {format_currency(summary.balance)}",
        f"├ Total Points: {format_number(summary.total_points)}",
        f"├ Total Fees: {format_currency(summary.total_fees)}",
        f"└ Pending Yield: {format_currency(summary.pending_yield)}",
        "",
        "💡 Use <b>👥 List Accounts</b> for per-account details.",
    ]
    return "\n".join(lines)


def render_account_list(accounts: list[AccountSnapshot]) -> str:
    if not accounts:
        return EMPTY_ACCOUNTS_TEXT
    lines = ["👥 <b>ACCOUNTS</b>", DIVIDER, ""]
    for index, account in enumerate(accounts, start=1):
        lines.append(f"{index}. {escape(account.display_name)}")
        lines.append(
            f"   └ Balance: {format_currency(account.balance)} | Points: {format_number(account.total_points)}"
        )
        lines.append("")
    lines.append("Pick an account to analyze:")
    return "\n".join(lines)


def render_analysis(analysis: AccountAnalysis, now: datetime, claim_threshold: float, timezone_label: str) -> str:
    account = analysis.account
    lines = [f"📊 <b>ANALYSIS {escape(account.display_name.upper())}</b>", DIVIDER, ""]

    lines.append("💰 <b>Growth (vs last snapshot)</b>")
    lines.append(
        f"├ Balance: {format_currency(account.balance)} {format_delta(analysis.balance_delta, format_currency)}"
    )
    lines.append(f"├ Points: {format_number(account.total_points)} {format_delta(analysis.points_delta)}")
    lines.append(f"├ Total Fees: {format_currency(account.total_fees)}")
    lines.append(f"└ Pending Yield: {format_currency(account.pending_yield)}")
    lines.append("")

    if analysis.positions:
        lines.append("📈 <b>Active Positions</b>")
        lines.append("")
        for index, position in enumerate(analysis.positions, start=1):
            marker = "✅" if position.in_range else "⚠️"
            status = "In Range ✅" if position.in_range else "Out of Range ⚠️"
            lines.append(f"{index}. {escape(position.pair)} {marker}")
            lines.append(
                f"├ Position: {format_optional(position.position_size, format_currency)} "
                f"({analysis.position_share(position):.1f}%)"
            )
            lines.append(f"├ APR: {format_apr(position.apr)}")
            lines.append(f"├ Est. Daily: {format_currency(position.estimated_daily_earnings)}")
            lines.append(f"└ Status: {status}")
            lines.append("")

        lines.append("📊 <b>Performance Metrics</b>")
        lines.append(f"├ Total Position Value: {format_currency(analysis.total_position_value)}")
        lines.append(f"├ Average APR: {analysis.average_apr:.2f}%")
        lines.append(f"├ Est. Daily Earnings: {format_currency(analysis.estimated_daily_earnings)}")
        lines.append(f"└ All In Range: {'Yes ✅' if analysis.all_in_range else 'No ⚠️'}")
        lines.append("")

    if analysis.should_claim(claim_threshold):
        advice = f"Claim your yield now ({format_currency(account.pending_yield)})"
    else:
        advice = "Hold your positions"
    lines.extend(["💡 <b>Recommendation</b>", f"• {advice}", "", DIVIDER])
    lines.append(f"⏰ {now:%d/%m/%Y, %H:%M:%S} {timezone_label}")
    return "\n".join(lines)
