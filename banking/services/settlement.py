from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from banking.exceptions import (
    AlreadySettled,
    CrossCurrencyNotAllowed,
    DirectionMismatch,
    InsufficientObligationBalance,
    InvalidSettlementAmount,
    ReconciliationError,
    SettlementAlreadyReversed,
    SettlementNotFound,
    TransactionNotFound,
)
from banking.models import BankTransaction, ObligationType, Settlement
from banking.services.audit import ReconciliationEvent, log_reconciliation_event
from banking.services.ledger import LedgerOutcome, Obligation, ObligationLedger

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class _StaleTransaction(Exception):
    """The compare-and-swap on the transaction row lost a race."""


def _dec(value) -> Decimal:
    if value is None or value == "":
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def actor_label(actor) -> Tuple[str, Optional[object]]:
    """Return (label, user) for a user instance, a plain string or None (= auto)."""
    if actor is None or actor == Settlement.AUTO_ACTOR:
        return Settlement.AUTO_ACTOR, None
    if isinstance(actor, str):
        return actor, None
    return actor.get_username(), actor


class SettlementApplier:
    """
    Applies a bank transaction to an obligation exactly once.

    The transaction row is claimed with a conditional UPDATE on its version
    (compare-and-swap); the obligation balance is decremented by the ledger
    under a "remaining >= amount" guard. Both happen inside one database
    transaction with the Settlement insert, so either all three land or none do.
    The ledger is called last so a refusal there needs no compensation.
    """

    MAX_ATTEMPTS = 3

    def __init__(self, ledger: ObligationLedger, amount_epsilon: Decimal = CENT):
        self.ledger = ledger
        self.amount_epsilon = amount_epsilon

    def _load_transaction(self, transaction_id: int, business=None) -> BankTransaction:
        qs = BankTransaction.objects.select_related("business").filter(pk=transaction_id)
        if business is not None:
            qs = qs.filter(business=business)
        tx = qs.first()
        if tx is None:
            raise TransactionNotFound(transaction_id=transaction_id)
        return tx

    def _check(
        self,
        tx: BankTransaction,
        obligation: Obligation,
        amount: Optional[Decimal],
        *,
        allow_cross_currency: bool,
        is_auto: bool,
    ) -> Tuple[Decimal, bool]:
        if tx.state == BankTransaction.State.MATCHED or tx.unsettled_amount <= 0:
            raise AlreadySettled(transaction_id=tx.pk)

        expected = ObligationType.RECEIVABLE if tx.is_inflow else ObligationType.PAYABLE
        if obligation.obligation_type != expected:
            raise DirectionMismatch(transaction_id=tx.pk, obligation_type=obligation.obligation_type)

        cross_currency = tx.currency.upper() != obligation.currency.upper()
        if cross_currency and (is_auto or not allow_cross_currency):
            raise CrossCurrencyNotAllowed(
                f"Transaction is in {tx.currency}, obligation in {obligation.currency}.",
                transaction_id=tx.pk,
            )

        applied = _dec(amount) if amount is not None else min(tx.unsettled_amount, obligation.amount_due)
        if applied <= 0 or applied > tx.unsettled_amount:
            raise InvalidSettlementAmount(
                f"Amount {applied} must be positive and at most the unsettled {tx.unsettled_amount}.",
                transaction_id=tx.pk,
            )
        if applied > obligation.amount_due:
            raise InsufficientObligationBalance(
                f"Amount {applied} exceeds remaining {obligation.amount_due}.",
                obligation_type=obligation.obligation_type,
                obligation_id=obligation.obligation_id,
            )
        return applied, cross_currency

    def apply(
        self,
        *,
        transaction_id: int,
        obligation_type: str,
        obligation_id: int,
        amount: Optional[Decimal] = None,
        actor=None,
        allow_cross_currency: bool = False,
        confidence: Optional[float] = None,
        business=None,
        note: str = "",
    ) -> Settlement:
        """
        Apply ``amount`` (default: as much as both sides allow) of the transaction.

        Raises AlreadySettled, InsufficientObligationBalance, CrossCurrencyNotAllowed,
        DirectionMismatch or InvalidSettlementAmount without changing anything.
        """
        label, user = actor_label(actor)
        is_auto = label == Settlement.AUTO_ACTOR

        for _ in range(self.MAX_ATTEMPTS):
            tx = self._load_transaction(transaction_id, business)
            obligation = self.ledger.get_obligation(tx.business, obligation_type, obligation_id)
            applied, cross_currency = self._check(
                tx, obligation, amount, allow_cross_currency=allow_cross_currency, is_auto=is_auto
            )
            try:
                settlement = self._commit(
                    tx,
                    obligation,
                    applied,
                    label=label,
                    user=user,
                    cross_currency=cross_currency,
                    confidence=confidence,
                    note=note,
                )
            except _StaleTransaction:
                logger.info("Transaction %s changed while applying; retrying", transaction_id)
                continue
            except IntegrityError as exc:
                raise AlreadySettled(transaction_id=transaction_id) from exc
            except ReconciliationError as exc:
                log_reconciliation_event(
                    ReconciliationEvent.SETTLEMENT_REJECTED,
                    tx.business_id,
                    {"transaction_id": tx.pk, "obligation": list(obligation.key), "code": exc.code},
                    actor=label,
                    level=logging.WARNING,
                )
                raise

            log_reconciliation_event(
                ReconciliationEvent.SETTLEMENT_APPLIED,
                tx.business_id,
                {
                    "settlement_id": settlement.pk,
                    "transaction_id": tx.pk,
                    "obligation": list(obligation.key),
                    "amount": str(applied),
                    "is_full": settlement.is_full,
                    "confidence": confidence,
                },
                actor=label,
            )
            return settlement

        raise AlreadySettled(
            "Transaction kept changing concurrently; reload and retry.",
            transaction_id=transaction_id,
        )

    @transaction.atomic
    def _commit(
        self,
        tx: BankTransaction,
        obligation: Obligation,
        applied: Decimal,
        *,
        label: str,
        user,
        cross_currency: bool,
        confidence: Optional[float],
        note: str,
    ) -> Settlement:
        # A residual within the amount epsilon closes the transaction (rounding difference).
        is_full = tx.absolute_amount - (tx.settled_amount + applied) <= self.amount_epsilon
        claimed = BankTransaction.objects.filter(
            pk=tx.pk,
            version=tx.version,
            state__in=BankTransaction.OPEN_STATES,
        ).update(
            settled_amount=F("settled_amount") + applied,
            state=BankTransaction.State.MATCHED if is_full else BankTransaction.State.UNMATCHED,
            version=F("version") + 1,
            suggestion_confidence=None,
            suggestion_reason="",
            updated_at=timezone.now(),
        )
        if not claimed:
            raise _StaleTransaction()

        settlement = Settlement.objects.create(
            business_id=tx.business_id,
            transaction=tx,
            obligation_type=obligation.obligation_type,
            obligation_id=obligation.obligation_id,
            kind=Settlement.Kind.APPLICATION,
            amount_applied=applied,
            currency=tx.currency,
            is_full=is_full,
            cycle=tx.reversal_count,
            confidence=Decimal(str(confidence)).quantize(Decimal("0.0001")) if confidence is not None else None,
            cross_currency=cross_currency,
            applied_by=user,
            actor=label,
            note=note[:255],
        )

        outcome = self.ledger.record_settlement(obligation.obligation_type, obligation.obligation_id, applied)
        if outcome != LedgerOutcome.OK:
            raise InsufficientObligationBalance(
                "Obligation balance changed before the settlement could be recorded.",
                obligation_type=obligation.obligation_type,
                obligation_id=obligation.obligation_id,
            )
        return settlement

    def reverse(self, *, settlement_id: int, actor=None, business=None, note: str = "") -> Settlement:
        """
        Record a compensating REVERSAL, give the amount back to the obligation
        and return the transaction to UNMATCHED.
        """
        label, user = actor_label(actor)
        qs = Settlement.objects.filter(pk=settlement_id)
        if business is not None:
            qs = qs.filter(business=business)
        original = qs.first()
        if original is None:
            raise SettlementNotFound(settlement_id=settlement_id)
        if original.kind != Settlement.Kind.APPLICATION:
            raise ReconciliationError("Only applications can be reversed.", settlement_id=settlement_id)
        if Settlement.objects.filter(reverses=original).exists():
            raise SettlementAlreadyReversed(settlement_id=settlement_id)

        for _ in range(self.MAX_ATTEMPTS):
            tx = self._load_transaction(original.transaction_id)
            try:
                reversal = self._commit_reversal(tx, original, label=label, user=user, note=note)
            except _StaleTransaction:
                continue
            except IntegrityError as exc:
                raise SettlementAlreadyReversed(settlement_id=settlement_id) from exc

            log_reconciliation_event(
                ReconciliationEvent.SETTLEMENT_REVERSED,
                tx.business_id,
                {
                    "settlement_id": original.pk,
                    "reversal_id": reversal.pk,
                    "transaction_id": tx.pk,
                    "obligation": [original.obligation_type, original.obligation_id],
                    "amount": str(original.amount_applied),
                },
                actor=label,
            )
            return reversal

        raise SettlementAlreadyReversed(
            "Transaction kept changing concurrently; reload and retry.",
            settlement_id=settlement_id,
        )

    @transaction.atomic
    def _commit_reversal(self, tx: BankTransaction, original: Settlement, *, label: str, user, note: str) -> Settlement:
        claimed = BankTransaction.objects.filter(
            pk=tx.pk,
            version=tx.version,
            settled_amount__gte=original.amount_applied,
        ).update(
            settled_amount=F("settled_amount") - original.amount_applied,
            state=BankTransaction.State.UNMATCHED,
            version=F("version") + 1,
            reversal_count=F("reversal_count") + 1,
            updated_at=timezone.now(),
        )
        if not claimed:
            raise _StaleTransaction()

        reversal = Settlement.objects.create(
            business_id=original.business_id,
            transaction_id=original.transaction_id,
            obligation_type=original.obligation_type,
            obligation_id=original.obligation_id,
            kind=Settlement.Kind.REVERSAL,
            amount_applied=original.amount_applied,
            currency=original.currency,
            is_full=False,
            cycle=tx.reversal_count,
            reverses=original,
            cross_currency=original.cross_currency,
            applied_by=user,
            actor=label,
            note=note[:255],
        )
        self.ledger.release_settlement(original.obligation_type, original.obligation_id, original.amount_applied)
        return reversal
