"""
Terminal rendering for sync results.

Glyphs live here only; the engine never depends on display strings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..schemas.sync_result import AccountSyncState, SyncErrorType, SyncTransactionStatus
from ..services.review import ReviewSeverity

if TYPE_CHECKING:
    from ..schemas.sync_result import AccountSyncResult, SyncResult
    from ..services.review import ReviewItem

ERROR_GLYPHS = {
    SyncErrorType.AUTHENTICATION: "🔐",
    SyncErrorType.NETWORK: "🌐",
    SyncErrorType.API_ERROR: "⚠️",
    SyncErrorType.DATA_VALIDATION: "📊",
    SyncErrorType.AMOUNT_CONVERSION: "💰",
    SyncErrorType.DUPLICATE_TRANSACTION: "🔄",
    SyncErrorType.ACCOUNT_MAPPING: "🏦",
    SyncErrorType.DATABASE_ERROR: "💾",
    SyncErrorType.CONFIGURATION_ERROR: "⚙️",
    SyncErrorType.RATE_LIMITED: "⏱️",
    SyncErrorType.UNKNOWN: "❓",
}

STATUS_GLYPHS = {
    SyncTransactionStatus.PENDING: "…",
    SyncTransactionStatus.SYNCED: "✓",
    SyncTransactionStatus.FAILED: "❌",
    SyncTransactionStatus.SKIPPED: "⏭",
    SyncTransactionStatus.DUPLICATE: "🔄",
    SyncTransactionStatus.WOULD_SYNC: "📝",
}

STATE_GLYPHS = {
    AccountSyncState.COMPLETED: "✓",
    AccountSyncState.ABORTED: "❌",
    AccountSyncState.CANCELLED: "⏹",
}

SEVERITY_GLYPHS = {
    ReviewSeverity.LOW: "ℹ️",
    ReviewSeverity.MEDIUM: "⚠️",
    ReviewSeverity.HIGH: "❗",
    ReviewSeverity.CRITICAL: "🚨",
}


def format_amount(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def format_account(result: AccountSyncResult, verbose: bool = False) -> list[str]:
    glyph = STATE_GLYPHS.get(result.state, "•")
    lines = [
        f"  {glyph} {result.mapping.display_name}: "
        f"{result.synced_count} synced, {result.duplicate_count} duplicate, "
        f"{result.skipped_count} skipped, {result.failed_count} failed"
        + (f", {result.would_sync_count} would sync" if result.would_sync_count else "")
    ]
    if result.synced_count:
        lines.append(f"     → Amount synced: {format_amount(result.amount_synced)}")

    for tx in result.transactions:
        show = verbose or tx.status in (SyncTransactionStatus.FAILED, SyncTransactionStatus.WOULD_SYNC)
        if not show:
            continue
        source = tx.source_transaction
        line = (
            f"     {STATUS_GLYPHS[tx.status]} {source.display_description} "
            f"{format_amount(source.amount)}"
        )
        if tx.request is not None and tx.status == SyncTransactionStatus.WOULD_SYNC:
            line += f" → {tx.request.payee_name} on {tx.request.date}"
        if tx.detail and tx.status != SyncTransactionStatus.WOULD_SYNC:
            line += f" ({tx.detail})"
        lines.append(line)

    for error in result.errors:
        if error.transaction_id is None:
            lines.append(f"     {ERROR_GLYPHS[error.type]} {error.message}")
    return lines


def format_result(result: SyncResult, verbose: bool = False) -> str:
    """Render a run summary with itemized errors."""
    summary = result.summary
    title = "📝 Dry run" if result.dry_run else "🔄 Sync"
    lines = [
        "",
        f"{title} {result.date_range.start} → {result.date_range.end}",
        "=" * 40,
    ]
    for account in result.account_results:
        lines.extend(format_account(account, verbose))

    lines.append("")
    lines.append(f"  Accounts:        {summary.total_accounts}")
    lines.append(f"  Transactions:    {summary.total_transactions}")
    lines.append(f"  Synced:          {summary.synced}")
    lines.append(f"  Duplicates:      {summary.duplicate}")
    lines.append(f"  Skipped:         {summary.skipped}")
    lines.append(f"  Failed:          {summary.failed}")
    if result.dry_run:
        lines.append(f"  Would sync:      {summary.would_sync}")
    lines.append(f"  Success rate:    {summary.success_rate:.0%}")
    lines.append(f"  Duration:        {summary.duration_seconds:.1f}s")

    if result.errors:
        lines.append("")
        lines.append(f"⚠️  {len(result.errors)} error(s):")
        for error in result.errors:
            marker = " [critical]" if error.is_critical else ""
            lines.append(f"   {ERROR_GLYPHS[error.type]} {error.message}{marker}")

    if result.cancelled:
        lines.append("")
        lines.append("⏹  Run was cancelled")

    return "\n".join(lines)


def format_review_item(item: ReviewItem) -> str:
    return f"  {SEVERITY_GLYPHS[item.severity]} [{item.type.value}] {item.title}\n     {item.description}"
