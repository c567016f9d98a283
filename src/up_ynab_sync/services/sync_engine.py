"""Sync engine: runs every enabled account mapping and aggregates the results.

Accounts are isolated from each other: an exception or abort in one mapping
becomes that mapping's AccountSyncResult and the remaining mappings still run.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from up_ynab_sync.matching.engine import CategorizationMatcher
from up_ynab_sync.schemas.sync_result import (
    AccountSyncResult,
    AccountSyncState,
    SyncError,
    SyncResult,
    SyncSummary,
    SyncTransactionStatus,
)
from up_ynab_sync.services.account_sync import AccountSyncRunner
from up_ynab_sync.services.error_mapping import classify_exception

if TYPE_CHECKING:
    from up_ynab_sync.schemas.transactions import AccountMapping, SyncContext
    from up_ynab_sync.services.ports import (
        DestinationLedger,
        MerchantRuleProvider,
        SourceLedger,
        SyncStateStore,
    )

logger = logging.getLogger(__name__)


class SyncEngine:
    """Orchestrates one sync run across account mappings."""

    def __init__(
        self,
        source: SourceLedger,
        destination: DestinationLedger,
        state_store: SyncStateStore,
        rule_provider: MerchantRuleProvider | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            source: Up Banking client (or anything with list_transactions).
            destination: YNAB client.
            state_store: Durable sync state.
            rule_provider: Source of merchant rules; only consulted when
                categorization is enabled for the run.
            sleep: Wait function used between retries.
        """
        self.source = source
        self.destination = destination
        self.store = state_store
        self.rule_provider = rule_provider
        self.sleep = sleep

    def _load_matcher(
        self, context: SyncContext, run_errors: list[SyncError]
    ) -> CategorizationMatcher | None:
        if not context.categorization.enabled:
            return None
        if self.rule_provider is None:
            logger.warning("Categorization enabled but no rule provider configured")
            return None

        try:
            rules = self.rule_provider.load_rules(context.profile_id)
        except Exception as e:
            error = classify_exception(e)
            logger.error("Loading merchant rules failed, continuing uncategorized: %s", e)
            run_errors.append(error)
            return None

        logger.info("Loaded %d merchant rule(s) for profile %s", len(rules), context.profile_id)
        return CategorizationMatcher(rules)

    def _record_rule_usage(self, account_results: Sequence[AccountSyncResult]) -> None:
        """Count each rule once per synced transaction it categorized."""
        counts = Counter(
            outcome.match.rule.id
            for account in account_results
            for outcome in account.transactions
            if outcome.status == SyncTransactionStatus.SYNCED
            and outcome.match is not None
            and outcome.match.rule is not None
            and outcome.match.rule.id is not None
        )
        if not counts or self.rule_provider is None:
            return
        try:
            self.rule_provider.record_rule_usage(dict(counts))
        except Exception as e:
            logger.warning("Failed to record merchant rule usage: %s", e)

    def _sync_account(
        self,
        runner: AccountSyncRunner,
        mapping: AccountMapping,
        context: SyncContext,
        cancel_event: threading.Event | None,
    ) -> AccountSyncResult:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Cancelled before %s started", mapping.display_name)
            return AccountSyncResult(mapping=mapping, state=AccountSyncState.CANCELLED)

        try:
            return runner.run(mapping, context.date_range, dry_run=context.options.dry_run)
        except Exception as e:
            logger.exception("Account %s aborted", mapping.display_name)
            error = classify_exception(
                e, account_id=mapping.source_account_id, is_critical=True
            )
            return AccountSyncResult(
                mapping=mapping, state=AccountSyncState.ABORTED, errors=(error,)
            )

    def run(
        self,
        context: SyncContext,
        cancel_event: threading.Event | None = None,
    ) -> SyncResult:
        """
        Run a sync.

        Args:
            context: Mappings, date range, settings and options for this run
            cancel_event: Set to stop between transactions/accounts

        Returns:
            SyncResult with one AccountSyncResult per active mapping, in
            mapping order
        """
        run_id = str(uuid.uuid4())
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        run_errors: list[SyncError] = []

        mappings = context.active_mappings
        logger.info(
            "Sync run %s: %d account(s), %s to %s%s",
            run_id,
            len(mappings),
            context.date_range.start,
            context.date_range.end,
            " [dry run]" if context.options.dry_run else "",
        )

        matcher = self._load_matcher(context, run_errors)
        runner = AccountSyncRunner(
            source=self.source,
            destination=self.destination,
            state_store=self.store,
            settings=context.settings,
            categorization=context.categorization,
            matcher=matcher,
            sleep=self.sleep,
            cancel_event=cancel_event,
        )

        workers = max(1, min(context.settings.max_workers, len(mappings) or 1))
        if workers == 1:
            account_results = [
                self._sync_account(runner, m, context, cancel_event) for m in mappings
            ]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="account-sync") as pool:
                account_results = list(
                    pool.map(
                        lambda m: self._sync_account(runner, m, context, cancel_event),
                        mappings,
                    )
                )

        duration = time.monotonic() - start
        summary = SyncSummary.from_account_results(account_results, duration)
        errors = tuple(run_errors) + tuple(e for r in account_results for e in r.errors)

        result = SyncResult(
            run_id=run_id,
            date_range=context.date_range,
            dry_run=context.options.dry_run,
            account_results=tuple(account_results),
            summary=summary,
            errors=errors,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            cancelled=cancel_event is not None and cancel_event.is_set(),
        )

        logger.info(
            "Sync run %s finished in %.1fs: %d/%d synced (%.0f%%), %d error(s)%s",
            run_id,
            duration,
            summary.synced,
            summary.total_transactions,
            summary.success_rate * 100,
            len(errors),
            "" if result.is_success else " [critical]",
        )

        if not context.options.dry_run:
            try:
                self.store.record_sync_run(result)
            except Exception as e:
                logger.error("Failed to record sync run %s: %s", run_id, e)
            self._record_rule_usage(account_results)

        return result
