"""
Import / match orchestration.

Drives a parsed statement through canonicalization, deduplication, matching
and (for unambiguous, exact, same-currency matches) settlement, and exposes
the manual suggestion / apply / reverse operations used by the API.

Transaction lifecycle::

    IMPORTED -> DUPLICATE                (never stored)
    IMPORTED -> UNMATCHED | SUGGESTED | MATCHED
    SUGGESTED -> MATCHED                 (manual confirm)
    SUGGESTED -> UNMATCHED               (manual reject, or re-scoring drops it)
    UNMATCHED -> MATCHED                 (auto-match pass or manual match)
    MATCHED -> UNMATCHED                 (explicit reversal only)
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from django.db import DatabaseError
from django.db.models import Count, F, Sum
from django.db.models.functions import Abs
from django.utils import timezone

from banking.exceptions import (
    AlreadySettled,
    ImportCancelled,
    InvalidRow,
    ObligationSourceUnavailable,
    ReconciliationError,
    TransactionNotFound,
)
from banking.models import BankAccount, BankTransaction, ImportBatch, ObligationType, Settlement
from banking.services.audit import ReconciliationEvent, log_reconciliation_event
from banking.services.canonicalizer import RawStatementRow, canonicalize
from banking.services.deduplication import RowOutcome, insert_if_absent
from banking.services.ledger import DateWindow, Obligation, ObligationLedger, get_ledger
from banking.services.matching import (
    MatchDecision,
    MatchingConfig,
    MatchOutcome,
    MatchSuggestion,
    TransactionFacts,
    decide,
    rank_candidates,
    suggestions_for,
)
from banking.services.settlement import SettlementApplier, actor_label

logger = logging.getLogger(__name__)


@dataclass
class ImportBatchResult:
    batch_id: int
    imported: int = 0
    duplicates: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False
    matched: int = 0
    source_checksum: str = ""


@dataclass
class AutoMatchResult:
    matched: int = 0
    suggested: int = 0
    unmatched: int = 0
    deferred: bool = False
    failures: List[Dict[str, Any]] = field(default_factory=list)


def compute_source_checksum(rows: List[Any]) -> str:
    payload = [row.model_dump(by_alias=True) if isinstance(row, RawStatementRow) else row for row in rows]
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def _cancel_requested(cancel_check: Optional[Callable[[], bool]]) -> bool:
    if cancel_check is None:
        return False
    try:
        return bool(cancel_check())
    except ImportCancelled:
        return True


class ReconciliationService:
    def __init__(self, ledger: Optional[ObligationLedger] = None, config: Optional[MatchingConfig] = None):
        self.ledger = ledger or get_ledger()
        self.config = config or MatchingConfig.from_settings()
        self.applier = SettlementApplier(self.ledger, amount_epsilon=self.config.amount_epsilon)

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_batch(
        self,
        business,
        bank_account: BankAccount,
        rows: Iterable[Any],
        *,
        source_checksum: Optional[str] = None,
        cancel_check: Optional[Callable[[], bool]] = None,
        actor=None,
        auto_match: bool = False,
    ) -> ImportBatchResult:
        """
        Import parsed statement rows into ``bank_account``.

        Each row commits on its own; a bad row is reported and skipped, a
        duplicate is counted and skipped. ``cancel_check`` is polled between
        rows: rows already committed stay committed and the batch is marked
        CANCELLED. A database failure marks the batch FAILED and propagates.
        """
        if bank_account.business_id != business.pk:
            raise ReconciliationError("Bank account does not belong to this business.")

        rows = list(rows)
        checksum = source_checksum or compute_source_checksum(rows)
        _, user = actor_label(actor)
        batch = ImportBatch.objects.create(
            business=business,
            bank_account=bank_account,
            source_checksum=checksum,
            created_by=user,
        )
        result = ImportBatchResult(batch_id=batch.pk, source_checksum=checksum)

        try:
            for index, row in enumerate(rows):
                if _cancel_requested(cancel_check):
                    result.cancelled = True
                    break
                try:
                    canonical = canonicalize(row, row_index=index, default_currency=bank_account.currency)
                except InvalidRow as exc:
                    result.errors.append(exc.as_row_error())
                    continue

                outcome, _ = insert_if_absent(bank_account=bank_account, canonical=canonical, import_batch=batch)
                if outcome == RowOutcome.IMPORTED:
                    result.imported += 1
                else:
                    result.duplicates += 1
        except DatabaseError as exc:
            # Rows committed so far stay committed; the batch records where it stopped.
            self._finish_batch(batch, result, ImportBatch.Status.FAILED)
            log_reconciliation_event(
                ReconciliationEvent.IMPORT_FAILED,
                business.pk,
                {"batch_id": batch.pk, "imported": result.imported, "error": str(exc)},
                actor=actor_label(actor)[0],
                level=logging.ERROR,
            )
            raise

        if auto_match and result.imported and not result.cancelled:
            result.matched = self.auto_match(business, bank_account, actor=actor).matched

        status = ImportBatch.Status.CANCELLED if result.cancelled else ImportBatch.Status.COMPLETED
        self._finish_batch(batch, result, status)
        BankAccount.objects.filter(pk=bank_account.pk).update(last_imported_at=batch.completed_at)

        log_reconciliation_event(
            ReconciliationEvent.IMPORT_CANCELLED if result.cancelled else ReconciliationEvent.IMPORT_COMPLETED,
            business.pk,
            {
                "batch_id": batch.pk,
                "bank_account_id": bank_account.pk,
                "imported": result.imported,
                "duplicates": result.duplicates,
                "errors": len(result.errors),
                "matched": result.matched,
            },
            actor=actor_label(actor)[0],
        )
        return result

    @staticmethod
    def _finish_batch(batch: ImportBatch, result: ImportBatchResult, status: str) -> None:
        batch.imported_count = result.imported
        batch.duplicate_count = result.duplicates
        batch.error_count = len(result.errors)
        batch.errors = result.errors
        batch.transactions_matched = result.matched
        batch.status = status
        batch.completed_at = timezone.now()
        batch.save()

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _load_transaction(self, transaction_id: int, business=None) -> BankTransaction:
        qs = BankTransaction.objects.select_related("business").filter(pk=transaction_id)
        if business is not None:
            qs = qs.filter(business=business)
        tx = qs.first()
        if tx is None:
            raise TransactionNotFound(transaction_id=transaction_id)
        return tx

    def get_suggestions(self, transaction_id: int, business=None) -> List[MatchSuggestion]:
        """Ranked suggestions, best first. A ledger outage yields no candidates."""
        tx = self._load_transaction(transaction_id, business)
        if tx.state == BankTransaction.State.MATCHED:
            return []
        facts = TransactionFacts.from_model(tx)
        try:
            obligations = self.ledger.list_outstanding_obligations(
                tx.business, facts.direction, self.config.window_for(tx.posted_date)
            )
        except ObligationSourceUnavailable as exc:
            logger.warning("No suggestions for transaction %s: %s", tx.pk, exc)
            return []
        return suggestions_for(facts, obligations, self.config)

    def _snapshot(self, business, transactions: List[BankTransaction]) -> Dict[Tuple[str, int], Obligation]:
        dates = [tx.posted_date for tx in transactions]
        window = DateWindow(
            start=self.config.window_for(min(dates)).start,
            end=self.config.window_for(max(dates)).end,
        )
        directions = {ObligationType.RECEIVABLE if tx.is_inflow else ObligationType.PAYABLE for tx in transactions}
        snapshot: Dict[Tuple[str, int], Obligation] = {}
        for direction in sorted(directions):
            for obligation in self.ledger.list_outstanding_obligations(business, direction, window):
                snapshot[obligation.key] = obligation
        return snapshot

    def auto_match(self, business, bank_account: BankAccount, *, actor=None) -> AutoMatchResult:
        """
        Score every open transaction of the account against one ledger snapshot.

        Unique exact same-currency winners are settled; the rest become
        SUGGESTED or stay UNMATCHED. SUGGESTED transactions are re-scored and
        fall back to UNMATCHED when nothing clears the floor any more, but are
        never settled without a person confirming.
        """
        open_txs = list(
            BankTransaction.objects.select_related("business")
            .filter(business=business, bank_account=bank_account, state__in=BankTransaction.OPEN_STATES)
            .order_by("posted_date", "id")
        )
        result = AutoMatchResult()
        if not open_txs:
            return result

        try:
            snapshot = self._snapshot(business, open_txs)
        except ObligationSourceUnavailable as exc:
            result.deferred = True
            result.unmatched = len(open_txs)
            log_reconciliation_event(
                ReconciliationEvent.AUTO_MATCH_DEFERRED,
                business.pk,
                {"bank_account_id": bank_account.pk, "reason": str(exc), "pending": len(open_txs)},
                level=logging.WARNING,
            )
            return result

        for tx in open_txs:
            state = self._match_one(tx, snapshot, result)
            if state == BankTransaction.State.MATCHED:
                result.matched += 1
            elif state == BankTransaction.State.SUGGESTED:
                result.suggested += 1
            else:
                result.unmatched += 1

        log_reconciliation_event(
            ReconciliationEvent.AUTO_MATCH_COMPLETED,
            business.pk,
            {
                "bank_account_id": bank_account.pk,
                "matched": result.matched,
                "suggested": result.suggested,
                "unmatched": result.unmatched,
                "failures": len(result.failures),
            },
            actor=actor_label(actor)[0],
        )
        return result

    def _match_one(
        self,
        tx: BankTransaction,
        snapshot: Dict[Tuple[str, int], Obligation],
        result: AutoMatchResult,
    ) -> str:
        awaiting_review = tx.state == BankTransaction.State.SUGGESTED
        excluded: Set[Tuple[str, int]] = set()

        while True:
            facts = TransactionFacts.from_model(tx)
            pool = [ob for key, ob in snapshot.items() if key not in excluded]
            decision = decide(rank_candidates(facts, pool, self.config), self.config)
            if decision.outcome != MatchOutcome.AUTO or awaiting_review:
                break

            best = decision.best
            try:
                settlement = self.applier.apply(
                    transaction_id=tx.pk,
                    obligation_type=best.obligation_type,
                    obligation_id=best.obligation_id,
                    actor=Settlement.AUTO_ACTOR,
                    confidence=best.confidence,
                    business=tx.business,
                )
            except ReconciliationError as exc:
                # Skip this candidate and try the next one, if any.
                result.failures.append(
                    {"transaction_id": tx.pk, "obligation": list(best.obligation.key), "code": exc.code}
                )
                excluded.add(best.obligation.key)
                tx.refresh_from_db()
                if isinstance(exc, AlreadySettled) or tx.state == BankTransaction.State.MATCHED:
                    return tx.state
                continue

            snapshot[best.obligation.key] = replace(
                best.obligation, amount_due=best.obligation.amount_due - settlement.amount_applied
            )
            tx.refresh_from_db()
            if tx.state == BankTransaction.State.MATCHED:
                return tx.state

        return self._record_decision(tx, decision)

    def _record_decision(self, tx: BankTransaction, decision: MatchDecision) -> str:
        if decision.outcome == MatchOutcome.NONE:
            if tx.state != BankTransaction.State.SUGGESTED:
                return tx.state
            updated = BankTransaction.objects.filter(
                pk=tx.pk, version=tx.version, state=BankTransaction.State.SUGGESTED
            ).update(
                state=BankTransaction.State.UNMATCHED,
                suggestion_confidence=None,
                suggestion_reason="",
                version=F("version") + 1,
                updated_at=timezone.now(),
            )
            return BankTransaction.State.UNMATCHED if updated else self._current_state(tx)

        best = decision.best
        reason = "; ".join(best.explanation)
        if decision.ambiguous:
            reason = f"Ambiguous: several candidates score alike. {reason}"
        updated = BankTransaction.objects.filter(
            pk=tx.pk, version=tx.version, state__in=BankTransaction.OPEN_STATES
        ).update(
            state=BankTransaction.State.SUGGESTED,
            suggestion_confidence=Decimal(str(best.confidence)).quantize(Decimal("0.0001")),
            suggestion_reason=reason,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        return BankTransaction.State.SUGGESTED if updated else self._current_state(tx)

    @staticmethod
    def _current_state(tx: BankTransaction) -> str:
        return BankTransaction.objects.filter(pk=tx.pk).values_list("state", flat=True).first() or tx.state

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    def apply_match(
        self,
        transaction_id: int,
        obligation_type: str,
        obligation_id: int,
        *,
        amount: Optional[Decimal] = None,
        actor=None,
        allow_cross_currency: bool = False,
        business=None,
        note: str = "",
    ) -> Settlement:
        return self.applier.apply(
            transaction_id=transaction_id,
            obligation_type=obligation_type,
            obligation_id=obligation_id,
            amount=amount,
            actor=actor,
            allow_cross_currency=allow_cross_currency,
            business=business,
            note=note,
        )

    def reverse_settlement(self, settlement_id: int, actor=None, *, business=None, note: str = "") -> Settlement:
        return self.applier.reverse(settlement_id=settlement_id, actor=actor, business=business, note=note)

    def reject_suggestions(self, transaction_id: int, actor=None, *, business=None) -> BankTransaction:
        """Manual reject: SUGGESTED -> UNMATCHED. Idempotent for UNMATCHED rows."""
        tx = self._load_transaction(transaction_id, business)
        if tx.state == BankTransaction.State.MATCHED:
            raise AlreadySettled(transaction_id=tx.pk)
        updated = BankTransaction.objects.filter(pk=tx.pk, state=BankTransaction.State.SUGGESTED).update(
            state=BankTransaction.State.UNMATCHED,
            suggestion_confidence=None,
            suggestion_reason="",
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        if updated:
            log_reconciliation_event(
                ReconciliationEvent.SUGGESTIONS_REJECTED,
                tx.business_id,
                {"transaction_id": tx.pk},
                actor=actor_label(actor)[0],
            )
        tx.refresh_from_db()
        return tx

    def list_import_batches(self, business, bank_account: BankAccount):
        return ImportBatch.objects.filter(business=business, bank_account=bank_account).order_by("-imported_at", "-id")

    def list_transactions(self, business, bank_account: BankAccount, state: Optional[str] = None):
        """Newest first; ``state`` narrows to UNMATCHED, SUGGESTED or MATCHED."""
        qs = BankTransaction.objects.filter(business=business, bank_account=bank_account)
        if state:
            if state not in BankTransaction.State.values:
                raise ReconciliationError(f"Unknown transaction state {state!r}.", state=state)
            qs = qs.filter(state=state)
        return qs.order_by("-posted_date", "-id")

    def account_summary(self, business, bank_account: BankAccount) -> Dict[str, Any]:
        qs = BankTransaction.objects.filter(business=business, bank_account=bank_account)
        by_state = {row["state"]: row["n"] for row in qs.values("state").annotate(n=Count("id"))}
        settled = qs.aggregate(total=Sum("settled_amount"))["total"] or Decimal("0.00")
        # Matched transactions are closed, including any rounding residual.
        open_totals = qs.filter(state__in=BankTransaction.OPEN_STATES).aggregate(
            gross=Sum(Abs("amount")), settled=Sum("settled_amount")
        )
        unsettled = (open_totals["gross"] or Decimal("0.00")) - (open_totals["settled"] or Decimal("0.00"))
        last_batch = ImportBatch.objects.filter(bank_account=bank_account).order_by("-imported_at", "-id").first()
        return {
            "bank_account_id": bank_account.pk,
            "total": sum(by_state.values()),
            "unmatched": by_state.get(BankTransaction.State.UNMATCHED, 0),
            "suggested": by_state.get(BankTransaction.State.SUGGESTED, 0),
            "matched": by_state.get(BankTransaction.State.MATCHED, 0),
            "settled_total": settled,
            "unsettled_total": unsettled,
            "last_import_id": last_batch.pk if last_batch else None,
            "last_imported_at": last_batch.imported_at if last_batch else None,
        }
