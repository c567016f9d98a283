"""Per-account sync: fetch, reconcile against sync state, submit.

One AccountSyncRunner.run() call moves a single account mapping through

    FETCHING → RECONCILING → SUBMITTING → COMPLETED

or stops at ABORTED (fetch failure or a critical error while submitting) or
CANCELLED (cancellation requested between transactions). Every fetched,
settled transaction gets exactly one SyncedTransactionResult.

Ordering guarantee: a transaction is marked synced in the state store before
the next transaction is submitted, so a crash can lose at most the record of
the transaction in flight, and YNAB's import_id dedup covers that one.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from datetime import time as dt_time
from typing import TYPE_CHECKING, TypeVar, cast

from up_ynab_sync.schemas.import_token import resolve_import_token
from up_ynab_sync.schemas.normalizer import (
    build_memo,
    resolve_payee_name,
    to_destination_amount,
    to_destination_date,
    validate_amount_conversion,
)
from up_ynab_sync.schemas.sync_result import (
    AccountSyncResult,
    AccountSyncState,
    SyncedTransactionResult,
    SyncError,
    SyncErrorType,
    SyncTransactionStatus,
)
from up_ynab_sync.schemas.transactions import DestinationTransactionRequest
from up_ynab_sync.services.error_mapping import classify_exception

if TYPE_CHECKING:
    from up_ynab_sync.config import CategorizationSettings, SyncSettings
    from up_ynab_sync.matching.engine import CategorizationMatch, CategorizationMatcher
    from up_ynab_sync.schemas.transactions import (
        AccountMapping,
        DateRange,
        DestinationTransaction,
        SourceTransaction,
    )
    from up_ynab_sync.services.ports import DestinationLedger, SourceLedger, SyncStateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def date_range_window(date_range: DateRange) -> tuple[datetime, datetime]:
    """Local-time [start 00:00, day after end 00:00) for the source API filter."""
    since = datetime.combine(date_range.start, dt_time.min).astimezone()
    until = datetime.combine(date_range.end + timedelta(days=1), dt_time.min).astimezone()
    return since, until


class AccountSyncRunner:
    """Syncs one account mapping.

    Retries transient failures (network, rate limit) up to
    `settings.max_retries` extra attempts with a fixed `settings.retry_delay`.
    Everything else is recorded on the first failure.
    """

    def __init__(
        self,
        source: SourceLedger,
        destination: DestinationLedger,
        state_store: SyncStateStore,
        settings: SyncSettings,
        categorization: CategorizationSettings,
        matcher: CategorizationMatcher | None = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.store = state_store
        self.settings = settings
        self.categorization = categorization
        self.matcher = matcher
        self.sleep = sleep
        self.cancel_event = cancel_event

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _attempt(
        self,
        operation: Callable[[], T],
        account_id: str,
        transaction_id: str | None = None,
    ) -> tuple[T | None, SyncError | None, int]:
        """Run an operation with the retry policy.

        Returns (result, error, attempts); exactly one of result/error is set.
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                return operation(), None, attempts
            except Exception as e:
                error = classify_exception(e, account_id=account_id, transaction_id=transaction_id)
                if error.is_transient and attempts <= self.settings.max_retries:
                    logger.warning(
                        "Attempt %d failed (%s: %s), retrying in %.1fs",
                        attempts,
                        error.type.value,
                        error.message,
                        self.settings.retry_delay,
                    )
                    self.sleep(self.settings.retry_delay)
                    continue
                return None, error, attempts

    def run(
        self,
        mapping: AccountMapping,
        date_range: DateRange,
        dry_run: bool = False,
    ) -> AccountSyncResult:
        """Sync one mapping over an inclusive date range."""
        started = time.monotonic()
        account_id = mapping.source_account_id

        logger.info(
            "Syncing %s (%s to %s)%s",
            mapping.display_name,
            date_range.start,
            date_range.end,
            " [dry run]" if dry_run else "",
        )

        # FETCHING
        since, until = date_range_window(date_range)
        fetched, fetch_error, _ = self._attempt(
            lambda: self.source.list_transactions(account_id, since, until), account_id
        )
        if fetch_error is not None:
            fetch_error = replace(fetch_error, is_critical=True)
            logger.error("Fetching %s failed: %s", mapping.display_name, fetch_error.message)
            return AccountSyncResult(
                mapping=mapping,
                state=AccountSyncState.ABORTED,
                errors=(fetch_error,),
                duration_seconds=time.monotonic() - started,
            )

        fetched = fetched or []
        settled = [tx for tx in fetched if tx.is_settled]
        pending_excluded = len(fetched) - len(settled)
        if pending_excluded:
            logger.debug("Excluded %d pending transaction(s)", pending_excluded)

        # RECONCILING
        slots: list[SyncedTransactionResult | None] = [None] * len(settled)
        tokens: list[str] = [""] * len(settled)
        errors: list[SyncError] = []
        abort_detail: str | None = None

        # Resolve every token up front so skipped results still carry theirs
        for index, tx in enumerate(settled):
            try:
                tokens[index] = resolve_import_token(tx.id)
            except ValueError as e:
                error = classify_exception(e, account_id=account_id, transaction_id=tx.id)
                errors.append(error)
                slots[index] = SyncedTransactionResult(
                    source_transaction=tx,
                    import_token="",
                    status=SyncTransactionStatus.FAILED,
                    error=error,
                    detail="no usable transaction id",
                )

        type_enabled = mapping.source_account_type in self.settings.enabled_account_types
        seen: set[str] = set()

        for index, tx in enumerate(settled):
            if slots[index] is not None:
                continue
            token = tokens[index]

            if not type_enabled:
                slots[index] = SyncedTransactionResult(
                    source_transaction=tx,
                    import_token=token,
                    status=SyncTransactionStatus.SKIPPED,
                    detail=f"account type {mapping.source_account_type.value} not enabled",
                )
            elif token in seen:
                slots[index] = SyncedTransactionResult(
                    source_transaction=tx,
                    import_token=token,
                    status=SyncTransactionStatus.DUPLICATE,
                    detail="repeated in this fetch",
                )
            else:
                try:
                    already_synced = self.store.is_synced(token)
                except Exception as e:
                    error = classify_exception(e, account_id=account_id, transaction_id=tx.id)
                    logger.exception("State lookup for %s failed", token)
                    errors.append(error)
                    slots[index] = SyncedTransactionResult(
                        source_transaction=tx,
                        import_token=token,
                        status=SyncTransactionStatus.FAILED,
                        error=error,
                        detail="state lookup failed",
                    )
                    if error.is_critical:
                        abort_detail = "aborted after critical error"
                        break
                    continue

                if already_synced:
                    slots[index] = SyncedTransactionResult(
                        source_transaction=tx,
                        import_token=token,
                        status=SyncTransactionStatus.DUPLICATE,
                        detail="already synced",
                    )
            seen.add(token)

        # SUBMITTING
        if abort_detail is None:
            logger.debug("Submitting %d transaction(s)", sum(1 for s in slots if s is None))
            for index, tx in enumerate(settled):
                if slots[index] is not None:
                    continue
                if self._cancelled():
                    abort_detail = "cancelled"
                    break

                try:
                    outcome = self._submit(tx, tokens[index], mapping, dry_run)
                except Exception as e:
                    error = classify_exception(e, account_id=account_id, transaction_id=tx.id)
                    logger.exception("Submitting %s failed", tokens[index])
                    outcome = SyncedTransactionResult(
                        source_transaction=tx,
                        import_token=tokens[index],
                        status=SyncTransactionStatus.FAILED,
                        error=error,
                        detail="unexpected error",
                    )

                slots[index] = outcome
                if outcome.error is not None and outcome.status == SyncTransactionStatus.FAILED:
                    errors.append(outcome.error)
                    if outcome.error.is_critical:
                        abort_detail = "aborted after critical error"
                        break

        if abort_detail == "cancelled":
            state = AccountSyncState.CANCELLED
        elif abort_detail is not None:
            state = AccountSyncState.ABORTED
        else:
            state = AccountSyncState.COMPLETED

        transactions = tuple(
            slot
            if slot is not None
            else SyncedTransactionResult(
                source_transaction=tx,
                import_token=token,
                status=SyncTransactionStatus.SKIPPED,
                detail=abort_detail,
            )
            for tx, token, slot in zip(settled, tokens, slots)
        )

        result = AccountSyncResult(
            mapping=mapping,
            state=state,
            transactions=transactions,
            errors=tuple(errors),
            fetched_count=len(fetched),
            pending_excluded=pending_excluded,
            duration_seconds=time.monotonic() - started,
        )

        logger.info(
            "%s %s: %d synced, %d duplicate, %d skipped, %d failed, %d would sync",
            mapping.display_name,
            state.value,
            result.synced_count,
            result.duplicate_count,
            result.skipped_count,
            result.failed_count,
            result.would_sync_count,
        )
        return result

    def _categorize(self, tx: SourceTransaction) -> CategorizationMatch | None:
        if not self.categorization.enabled or self.matcher is None:
            return None
        return self.matcher.match(tx.display_description)

    def _build_request(
        self,
        tx: SourceTransaction,
        token: str,
        mapping: AccountMapping,
        match: CategorizationMatch | None,
    ) -> DestinationTransactionRequest:
        rule_payee = match.payee_name if match is not None and match.matched else None
        category_id = None
        if match is not None and match.meets_threshold(
            self.categorization.min_confidence_threshold
        ):
            category_id = match.category_id

        return DestinationTransactionRequest(
            account_id=mapping.destination_account_id,
            date=to_destination_date(tx.settled_at, tx.created_at),
            amount=to_destination_amount(tx.amount),
            payee_name=resolve_payee_name(rule_payee, tx.description, tx.raw_text),
            memo=build_memo(tx.description, tx.message),
            category_id=category_id,
            import_id=token,
        )

    def _submit(
        self,
        tx: SourceTransaction,
        token: str,
        mapping: AccountMapping,
        dry_run: bool,
    ) -> SyncedTransactionResult:
        account_id = mapping.source_account_id
        match = self._categorize(tx)

        try:
            request = self._build_request(tx, token, mapping, match)
        except ValueError as e:
            error = classify_exception(e, account_id=account_id, transaction_id=tx.id)
            logger.error("Cannot build YNAB transaction for %s: %s", tx.id, error.message)
            if not dry_run:
                self.store.record_failure(token, error, tx, mapping)
            return SyncedTransactionResult(
                source_transaction=tx,
                import_token=token,
                status=SyncTransactionStatus.FAILED,
                error=error,
                match=match,
                detail="could not build request",
            )

        if dry_run:
            return SyncedTransactionResult(
                source_transaction=tx,
                import_token=token,
                status=SyncTransactionStatus.WOULD_SYNC,
                request=request,
                amount_validated=validate_amount_conversion(tx.amount, request.amount),
                match=match,
                detail="dry run",
            )

        with self.store.token_lock(token):
            # Re-check under the lock; another worker may have synced it
            if self.store.is_synced(token):
                return SyncedTransactionResult(
                    source_transaction=tx,
                    import_token=token,
                    status=SyncTransactionStatus.DUPLICATE,
                    request=request,
                    match=match,
                    detail="already synced",
                )
            return self._create(tx, token, mapping, request, match)

    def _create(
        self,
        tx: SourceTransaction,
        token: str,
        mapping: AccountMapping,
        request: DestinationTransactionRequest,
        match: CategorizationMatch | None,
    ) -> SyncedTransactionResult:
        account_id = mapping.source_account_id
        created, error, attempts = self._attempt(
            lambda: self.destination.create_transaction(request), account_id, tx.id
        )

        if error is not None:
            if error.type == SyncErrorType.DUPLICATE_TRANSACTION:
                return self._verify_existing(tx, token, mapping, request, match, error, attempts)

            logger.error("Creating %s failed after %d attempt(s): %s", token, attempts, error.message)
            self.store.record_failure(token, error, tx, mapping)
            return SyncedTransactionResult(
                source_transaction=tx,
                import_token=token,
                status=SyncTransactionStatus.FAILED,
                request=request,
                error=error,
                attempts=attempts,
                match=match,
                detail="create failed",
            )

        # _attempt returns a result whenever it returns no error
        created = cast("DestinationTransaction", created)
        if created.amount is None:
            created = self.destination.get_transaction(created.id)

        if created.amount != request.amount:
            return self._amount_mismatch(tx, token, mapping, request, match, created, attempts)

        self.store.mark_synced(
            token,
            created.id,
            source_transaction=tx,
            mapping=mapping,
            destination_amount=created.amount,
            transaction_date=request.date,
        )
        return SyncedTransactionResult(
            source_transaction=tx,
            import_token=token,
            status=SyncTransactionStatus.SYNCED,
            request=request,
            destination_transaction=created,
            amount_validated=True,
            attempts=attempts,
            match=match,
            detail="created",
        )

    def _verify_existing(
        self,
        tx: SourceTransaction,
        token: str,
        mapping: AccountMapping,
        request: DestinationTransactionRequest,
        match: CategorizationMatch | None,
        duplicate: SyncError,
        attempts: int,
    ) -> SyncedTransactionResult:
        """YNAB already holds this import id; check its amount before accepting it.

        A transaction left FAILED by an earlier amount mismatch must stay
        failed on every later run.
        """
        existing_id = getattr(duplicate.cause, "existing_id", None)
        if not existing_id:
            record = self.store.get_record(token)
            existing_id = record.destination_transaction_id if record else None

        if not existing_id:
            logger.warning("%s already in YNAB but its id is unknown", token)
            self.store.mark_synced(
                token,
                None,
                source_transaction=tx,
                mapping=mapping,
                transaction_date=request.date,
            )
            return SyncedTransactionResult(
                source_transaction=tx,
                import_token=token,
                status=SyncTransactionStatus.DUPLICATE,
                request=request,
                amount_validated=False,
                attempts=attempts,
                match=match,
                detail="import id already in YNAB",
            )

        try:
            existing = self.destination.get_transaction(existing_id)
        except Exception as e:
            error = classify_exception(
                e, account_id=mapping.source_account_id, transaction_id=tx.id
            )
            logger.error("Reading existing YNAB transaction %s failed: %s", existing_id, error.message)
            self.store.record_failure(token, error, tx, mapping, destination_id=existing_id)
            return SyncedTransactionResult(
                source_transaction=tx,
                import_token=token,
                status=SyncTransactionStatus.FAILED,
                request=request,
                error=error,
                attempts=attempts,
                match=match,
                detail="existing YNAB transaction unreadable",
            )

        if existing.amount != request.amount:
            return self._amount_mismatch(tx, token, mapping, request, match, existing, attempts)

        self.store.mark_synced(
            token,
            existing.id,
            source_transaction=tx,
            mapping=mapping,
            destination_amount=existing.amount,
            transaction_date=request.date,
        )
        return SyncedTransactionResult(
            source_transaction=tx,
            import_token=token,
            status=SyncTransactionStatus.DUPLICATE,
            request=request,
            destination_transaction=existing,
            amount_validated=True,
            attempts=attempts,
            match=match,
            detail="import id already in YNAB",
        )

    def _amount_mismatch(
        self,
        tx: SourceTransaction,
        token: str,
        mapping: AccountMapping,
        request: DestinationTransactionRequest,
        match: CategorizationMatch | None,
        reported: DestinationTransaction,
        attempts: int,
    ) -> SyncedTransactionResult:
        mismatch = SyncError.create(
            SyncErrorType.AMOUNT_CONVERSION,
            f"YNAB reported {reported.amount} milliunits, submitted {request.amount}",
            account_id=mapping.source_account_id,
            transaction_id=tx.id,
        )
        logger.error("Amount mismatch for %s: %s", token, mismatch.message)
        self.store.record_failure(token, mismatch, tx, mapping, destination_id=reported.id)
        return SyncedTransactionResult(
            source_transaction=tx,
            import_token=token,
            status=SyncTransactionStatus.FAILED,
            request=request,
            destination_transaction=reported,
            error=mismatch,
            amount_validated=False,
            attempts=attempts,
            match=match,
            detail="amount mismatch",
        )
