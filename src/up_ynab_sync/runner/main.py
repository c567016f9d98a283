"""
CLI main entry point.
"""

import argparse
import logging
import signal
import sys
import threading
from datetime import date, timedelta
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..matching import (
    analyze_categorization_patterns,
    extract_merchant_pattern,
    suggest_merchant_rules,
)
from ..matching.learning import DEFAULT_CONFIDENCE_THRESHOLD
from ..schemas.transactions import DateRange, MerchantRule, SyncOptions
from ..services import ReviewQueue, SyncEngine, review_items_from_result
from ..state_store import StateStore
from ..up_client import UpClient
from ..ynab_client import YnabClient, YnabError
from .display import format_result, format_review_item

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # urllib3 retry chatter is noise at INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="up-ynab-sync",
        description="Sync settled Up Banking transactions into YNAB",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Sync transactions from Up to YNAB")
    window = sync_parser.add_mutually_exclusive_group()
    window.add_argument(
        "--days",
        type=int,
        help="Sync this many days back from today (default: sync.default_sync_days)",
    )
    window.add_argument(
        "--since",
        type=date.fromisoformat,
        help="First date to sync (YYYY-MM-DD)",
    )
    sync_parser.add_argument(
        "--until",
        type=date.fromisoformat,
        help="Last date to sync, inclusive (YYYY-MM-DD, default: today)",
    )
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be synced without writing anything",
    )
    sync_parser.add_argument(
        "--account",
        action="append",
        dest="accounts",
        metavar="ID_OR_NAME",
        help="Only sync this Up account (repeatable)",
    )
    sync_parser.add_argument(
        "--workers",
        type=int,
        help="Accounts to sync in parallel (default: sync.max_workers)",
    )
    sync_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full result as JSON",
    )

    # status command
    subparsers.add_parser("status", help="Show sync state and last run")

    # review command
    review_parser = subparsers.add_parser("review", help="List items needing attention")
    review_parser.add_argument(
        "--balances",
        action="store_true",
        help="Also compare Up and YNAB balances per mapping",
    )
    review_parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Delete failed records so the next sync retries them",
    )
    review_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum failed transactions to list (default: 50)",
    )

    # rules command
    rules_parser = subparsers.add_parser("rules", help="Manage merchant rules")
    rules_sub = rules_parser.add_subparsers(dest="rules_command", help="Rule action")
    rules_sub.add_parser("list", help="List rules for the profile")

    add_parser = rules_sub.add_parser("add", help="Add or update a rule")
    add_parser.add_argument("pattern", help="Description pattern (substring or regex)")
    add_parser.add_argument("payee", help="Payee name to use in YNAB")
    add_parser.add_argument("--category-id", help="YNAB category id")
    add_parser.add_argument("--category-name", help="Category name (display only)")
    add_parser.add_argument("--priority", type=int, default=0, help="Higher wins (default: 0)")
    add_parser.add_argument(
        "--confidence", type=float, default=1.0, help="Rule confidence 0-1 (default: 1.0)"
    )
    add_parser.add_argument("--regex", action="store_true", help="Treat pattern as a regex")

    remove_parser = rules_sub.add_parser("remove", help="Remove a rule")
    remove_parser.add_argument("pattern", help="Pattern of the rule to remove")

    suggest_parser = rules_sub.add_parser("suggest", help="Suggest a pattern for a description")
    suggest_parser.add_argument("description", help="Transaction description or raw text")

    learn_parser = rules_sub.add_parser(
        "learn", help="Suggest rules from transactions already categorized in YNAB"
    )
    learn_parser.add_argument(
        "--days", type=int, default=30, help="Analyze this many days back (default: 30)"
    )
    learn_parser.add_argument(
        "--min-confidence",
        type=float,
        default=DEFAULT_CONFIDENCE_THRESHOLD,
        help=f"Only suggest at or above this confidence (default: {DEFAULT_CONFIDENCE_THRESHOLD})",
    )
    learn_apply = learn_parser.add_mutually_exclusive_group()
    learn_apply.add_argument("--apply", action="store_true", help="Save every suggestion as a rule")
    learn_apply.add_argument(
        "--apply-auto",
        action="store_true",
        help="Save only suggestions confident enough to approve automatically",
    )

    rules_sub.add_parser("stats", help="Show how often each rule has categorized a sync")

    # accounts command
    subparsers.add_parser("accounts", help="List Up and YNAB accounts for mapping setup")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def _build_clients(config: Config) -> tuple[UpClient, YnabClient]:
    up = UpClient(
        token=config.up.token,
        base_url=config.up.base_url,
        timeout=config.sync.request_timeout,
        page_size=config.up.page_size,
        max_pages=config.up.max_pages,
    )
    ynab = YnabClient(
        token=config.ynab.token,
        budget_id=config.ynab.budget_id,
        base_url=config.ynab.base_url,
        timeout=config.sync.request_timeout,
    )
    return up, ynab


def _resolve_date_range(
    config: Config, days: int | None, since: date | None, until: date | None
) -> DateRange:
    if since is not None:
        return DateRange(start=since, end=until or date.today())
    window = DateRange.last_n_days(days if days is not None else config.sync.default_sync_days)
    if until is not None:
        return DateRange(start=window.start, end=until)
    return window


def cmd_sync(
    config: Config,
    days: int | None = None,
    since: date | None = None,
    until: date | None = None,
    dry_run: bool = False,
    accounts: list[str] | None = None,
    workers: int | None = None,
    as_json: bool = False,
    verbose: bool = False,
) -> int:
    """Run a sync and print the result. Exit code 0 iff no critical error."""
    try:
        config.require_valid()
        date_range = _resolve_date_range(config, days, since, until)
    except (ConfigValidationError, ValueError) as e:
        print(f"❌ {e}")
        return 1

    if not config.account_mappings:
        print("⚠️  No account mappings configured (see: up-ynab-sync accounts)")
        return 1

    if workers is not None:
        config.sync.max_workers = max(1, workers)

    context = config.build_context(
        date_range=date_range,
        options=SyncOptions(
            dry_run=dry_run,
            account_filter=tuple(accounts) if accounts else None,
        ),
    )
    if not context.active_mappings:
        print("⚠️  No enabled account mappings match the selection")
        return 1

    up, ynab = _build_clients(config)
    store = StateStore(config.state_db_path)
    engine = SyncEngine(up, ynab, store, rule_provider=store)

    cancel_event = threading.Event()

    def _handle_interrupt(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        print("\n⏹  Stopping after the current transaction (Ctrl-C again to force)")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, _handle_interrupt)
    try:
        result = engine.run(context, cancel_event=cancel_event)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if as_json:
        print(result.to_json())
    else:
        print(format_result(result, verbose=verbose))
        review_items = review_items_from_result(result)
        if review_items:
            print(f"\n🔍 {len(review_items)} item(s) to review")
            for item in review_items:
                print(format_review_item(item))
        print()
        if result.is_success:
            print("✓ Sync completed" + (" with warnings" if result.has_warnings else ""))
        else:
            print("❌ Sync finished with critical errors")

    return 0 if result.is_success else 1


def cmd_status(config: Config) -> int:
    """Show sync state health and the last run."""
    store = StateStore(config.state_db_path)
    health = store.get_health()
    last = store.get_last_sync_run()

    print("\n📊 Sync Status")
    print("=" * 40)
    print(f"  Mappings enabled:       {sum(1 for m in config.account_mappings if m.enabled)}")
    print(f"  Categorization:         {'on' if config.categorization.enabled else 'off'}")
    print(f"  Records total:          {health.total_records}")
    print(f"  Synced:                 {health.synced_records}")
    print(f"  Failed:                 {health.failed_transactions}")
    oldest = health.oldest_record.strftime("%Y-%m-%d") if health.oldest_record else "-"
    print(f"  Oldest record:          {oldest}")
    print(f"  Database integrity:     {'ok' if health.integrity_ok else 'FAILED'}")
    print(f"  Schema version:         {health.schema_version}")

    if last:
        outcome = "✓" if last.is_success else "❌"
        print()
        print(f"  Last run:               {outcome} {last.finished_at}")
        print(f"  Range:                  {last.range_start} → {last.range_end}")
        print(
            f"  Result:                 {last.synced} synced, {last.duplicate} duplicate, "
            f"{last.failed} failed of {last.processed}"
        )
    else:
        print("\n  No sync runs recorded yet")
    print()

    return 0 if health.integrity_ok else 1


def cmd_review(config: Config, balances: bool = False, cleanup: bool = False, limit: int = 50) -> int:
    """List failed transactions and, optionally, balance mismatches."""
    store = StateStore(config.state_db_path)
    queue = ReviewQueue(store)

    if cleanup:
        removed = queue.clear_failed()
        print(f"✓ Removed {removed} failed record(s); they will be retried on the next sync")
        return 0

    items = queue.failed_transactions(limit=limit)

    if balances:
        try:
            config.require_valid()
        except ConfigValidationError as e:
            print(f"❌ {e}")
            return 1
        up, ynab = _build_clients(config)
        items.extend(queue.check_balances(config.account_mappings, up, ynab))

    if not items:
        print("✓ Nothing to review")
        return 0

    print(f"\n🔍 {len(items)} item(s) to review")
    print("=" * 40)
    for item in items:
        print(format_review_item(item))
    print()
    return 0


def _learn_rules(config: Config, store: StateStore, parsed: argparse.Namespace) -> int:
    if not 0.0 <= parsed.min_confidence <= 1.0:
        print("❌ Confidence must be between 0 and 1")
        return 1
    try:
        config.require_valid()
    except ConfigValidationError as e:
        print(f"❌ {e}")
        return 1

    _, ynab = _build_clients(config)
    since = date.today() - timedelta(days=max(1, parsed.days))
    print(f"🔍 Learning from YNAB categorization since {since}")
    try:
        transactions = ynab.list_transactions(since_date=since.isoformat())
        categories = ynab.list_categories()
    except YnabError as e:
        print(f"❌ Failed to read YNAB transactions: {e}")
        return 1

    if not transactions:
        print("⚠️  No YNAB transactions in that window")
        return 1

    patterns = analyze_categorization_patterns(transactions, categories)
    suggestions = suggest_merchant_rules(
        patterns,
        threshold=parsed.min_confidence,
        existing_rules=store.load_rules(config.profile_id),
    )
    if not suggestions:
        print(f"No new rule suggestions from {len(transactions)} transaction(s)")
        return 0

    print(f"\n💡 {len(suggestions)} rule suggestion(s)")
    print("=" * 40)
    for suggestion in suggestions:
        marker = " [auto]" if suggestion.auto_approve else ""
        print(f"  {suggestion.source.confidence:.0%}{marker} {suggestion.description}")

    if parsed.apply or parsed.apply_auto:
        chosen = [s for s in suggestions if parsed.apply or s.auto_approve]
        for suggestion in chosen:
            store.save_rule(config.profile_id, suggestion.to_rule())
        print(f"\n✓ Saved {len(chosen)} rule(s)")
    else:
        print("\nRun again with --apply (or --apply-auto) to save them")
    print()
    return 0


def cmd_rules(config: Config, parsed: argparse.Namespace) -> int:
    """Manage merchant rules."""
    action = parsed.rules_command

    if action == "suggest":
        pattern = extract_merchant_pattern(parsed.description)
        if not pattern:
            print("⚠️  No usable pattern found")
            return 1
        print(pattern)
        return 0

    store = StateStore(config.state_db_path)

    if action == "learn":
        return _learn_rules(config, store, parsed)

    if action == "stats":
        stats = store.get_rule_stats(config.profile_id)
        used = [s for s in stats if s.match_count]
        print(f"\n📊 Merchant rule usage ({config.profile_id})")
        print("=" * 40)
        print(f"  Total rules:            {len(stats)}")
        print(f"  Used rules:             {len(used)}")
        print(f"  Total usage:            {sum(s.match_count for s in stats)}")
        for s in stats:
            last = s.last_matched_at.strftime("%Y-%m-%d") if s.last_matched_at else "never"
            category = f" → {s.category_name}" if s.category_name else ""
            print(f"  • {s.pattern}{category} (used {s.match_count} times, last {last})")
        print()
        return 0

    if action == "add":
        if not 0.0 <= parsed.confidence <= 1.0:
            print("❌ Confidence must be between 0 and 1")
            return 1
        rule = MerchantRule(
            pattern=parsed.pattern,
            payee_name=parsed.payee,
            category_id=parsed.category_id,
            category_name=parsed.category_name,
            priority=parsed.priority,
            confidence=parsed.confidence,
            is_regex=parsed.regex,
        )
        rule_id = store.save_rule(config.profile_id, rule)
        print(f"✓ Saved rule {rule_id}: {rule.pattern} → {rule.payee_name}")
        return 0

    if action == "remove":
        if store.delete_rule(config.profile_id, parsed.pattern):
            print(f"✓ Removed rule {parsed.pattern}")
            return 0
        print(f"❌ No rule with pattern {parsed.pattern}")
        return 1

    rules = store.load_rules(config.profile_id)
    if not rules:
        print("No merchant rules defined")
        return 0

    print(f"\n📋 Merchant rules ({config.profile_id})")
    print("=" * 40)
    for rule in rules:
        category = f" [{rule.category_name or rule.category_id}]" if rule.category_id else ""
        kind = "regex" if rule.is_regex else "text"
        print(
            f"  [{rule.id}] {rule.pattern} ({kind}) → {rule.payee_name}{category} "
            f"priority={rule.priority} confidence={rule.confidence:.2f}"
        )
    print()
    return 0


def cmd_accounts(config: Config) -> int:
    """List accounts on both sides to help write account_mappings."""
    up, ynab = _build_clients(config)

    if not up.test_connection():
        print("❌ Failed to connect to Up (check up.token)")
        return 1

    print("\n🏦 Up accounts")
    for account in up.list_accounts():
        print(
            f"  {account.id}  {account.display_name} "
            f"({account.account_type.value}) {account.balance / 100:,.2f}"
        )

    if not ynab.test_connection():
        print("❌ Failed to connect to YNAB (check ynab.token)")
        return 1

    print("\n📒 YNAB budgets")
    for budget in ynab.list_budgets():
        print(f"  {budget['id']}  {budget['name']}")

    print(f"\n💰 YNAB accounts (budget {config.ynab.budget_id})")
    for account in ynab.list_accounts():
        print(f"  {account.id}  {account.name} ({account.type}) {account.balance / 1000:,.2f}")
    print()
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        if parsed.config.exists():
            print(f"❌ {parsed.config} already exists")
            return 1
        create_default_config(parsed.config)
        print(f"✓ Wrote {parsed.config}")
        return 0

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "sync":
        return cmd_sync(
            config,
            days=parsed.days,
            since=parsed.since,
            until=parsed.until,
            dry_run=parsed.dry_run,
            accounts=parsed.accounts,
            workers=parsed.workers,
            as_json=parsed.json,
            verbose=parsed.verbose,
        )
    elif parsed.command == "status":
        return cmd_status(config)
    elif parsed.command == "review":
        return cmd_review(config, parsed.balances, parsed.cleanup, parsed.limit)
    elif parsed.command == "rules":
        return cmd_rules(config, parsed)
    elif parsed.command == "accounts":
        return cmd_accounts(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
