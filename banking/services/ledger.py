"""
Obligation ledger port.

The reconciliation core never edits invoices or bills directly. It reads a
snapshot of outstanding obligations and asks the ledger to record (or release)
settled amounts. ``DocumentLedger`` is the production backend over the
``core`` documents; ``InMemoryLedger`` is a thread-safe fake.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError
from django.db.models import F, Q
from django.utils.module_loading import import_string

from banking.exceptions import ObligationNotFound, ObligationSourceUnavailable
from banking.models import ObligationType
from core.models import Bill, Invoice

logger = logging.getLogger(__name__)


class LedgerOutcome(str, Enum):
    OK = "OK"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


@dataclass(frozen=True)
class DateWindow:
    start: date
    end: date

    def __contains__(self, value: date) -> bool:
        return self.start <= value <= self.end


@dataclass(frozen=True)
class Obligation:
    """Read projection of an invoice (RECEIVABLE) or bill (PAYABLE)."""

    obligation_type: str
    obligation_id: int
    business_id: int
    counterparty_name: str
    currency: str
    amount_due: Decimal
    due_date: Optional[date]
    reference: str
    issue_date: Optional[date] = None
    counterparty_id: Optional[int] = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.obligation_type, self.obligation_id)

    @property
    def anchor_date(self) -> Optional[date]:
        return self.due_date or self.issue_date


class ObligationLedger(ABC):
    @abstractmethod
    def list_outstanding_obligations(self, business, obligation_type: str, window: DateWindow) -> List[Obligation]:
        """Open obligations whose due (or issue) date falls inside ``window``."""

    @abstractmethod
    def get_obligation(self, business, obligation_type: str, obligation_id: int) -> Obligation:
        """Current projection of one obligation; raises ObligationNotFound."""

    @abstractmethod
    def record_settlement(self, obligation_type: str, obligation_id: int, amount: Decimal) -> LedgerOutcome:
        """Decrement the amount due by ``amount`` only if enough remains."""

    @abstractmethod
    def release_settlement(self, obligation_type: str, obligation_id: int, amount: Decimal) -> None:
        """Give ``amount`` back to the obligation (settlement reversal)."""


class DocumentLedger(ObligationLedger):
    MODELS = {
        ObligationType.RECEIVABLE: (Invoice, "customer"),
        ObligationType.PAYABLE: (Bill, "supplier"),
    }

    def _model(self, obligation_type: str):
        try:
            return self.MODELS[ObligationType(obligation_type)]
        except ValueError:
            raise ObligationNotFound(f"Unknown obligation type {obligation_type!r}.") from None

    def _project(self, obligation_type: str, doc) -> Obligation:
        counterparty = getattr(doc, self._model(obligation_type)[1])
        return Obligation(
            obligation_type=obligation_type,
            obligation_id=doc.pk,
            business_id=doc.business_id,
            counterparty_name=counterparty.name if counterparty else "",
            counterparty_id=counterparty.pk if counterparty else None,
            currency=doc.currency,
            amount_due=doc.balance,
            due_date=doc.due_date,
            issue_date=doc.issue_date,
            reference=doc.reference,
        )

    def list_outstanding_obligations(self, business, obligation_type: str, window: DateWindow) -> List[Obligation]:
        model, counterparty_field = self._model(obligation_type)
        qs = (
            model.objects.filter(business=business, balance__gt=0)
            .exclude(status__in=[model.Status.DRAFT, model.Status.VOID])
            .filter(
                Q(due_date__range=(window.start, window.end))
                | Q(due_date__isnull=True, issue_date__range=(window.start, window.end))
            )
            .select_related(counterparty_field)
            .order_by("due_date", "id")
        )
        try:
            return [self._project(obligation_type, doc) for doc in qs]
        except DatabaseError as exc:
            logger.warning("Obligation snapshot failed for business %s: %s", getattr(business, "pk", business), exc)
            raise ObligationSourceUnavailable(str(exc)) from exc

    def get_obligation(self, business, obligation_type: str, obligation_id: int) -> Obligation:
        model, counterparty_field = self._model(obligation_type)
        try:
            doc = (
                model.objects.select_related(counterparty_field)
                .filter(business=business, pk=obligation_id)
                .exclude(status__in=[model.Status.DRAFT, model.Status.VOID])
                .first()
            )
        except DatabaseError as exc:
            logger.warning("Obligation %s %s lookup failed: %s", obligation_type, obligation_id, exc)
            raise ObligationSourceUnavailable(str(exc)) from exc
        if doc is None:
            raise ObligationNotFound(obligation_type=obligation_type, obligation_id=obligation_id)
        return self._project(obligation_type, doc)

    def record_settlement(self, obligation_type: str, obligation_id: int, amount: Decimal) -> LedgerOutcome:
        model, _ = self._model(obligation_type)
        updated = model.objects.filter(pk=obligation_id, balance__gte=amount).update(
            balance=F("balance") - amount,
            amount_paid=F("amount_paid") + amount,
        )
        if not updated:
            return LedgerOutcome.INSUFFICIENT_BALANCE
        self._sync_status(model, obligation_id)
        return LedgerOutcome.OK

    def release_settlement(self, obligation_type: str, obligation_id: int, amount: Decimal) -> None:
        model, _ = self._model(obligation_type)
        updated = model.objects.filter(pk=obligation_id, amount_paid__gte=amount).update(
            balance=F("balance") + amount,
            amount_paid=F("amount_paid") - amount,
        )
        if not updated:
            raise ObligationNotFound(
                "Obligation cannot take back more than was paid.",
                obligation_type=obligation_type,
                obligation_id=obligation_id,
            )
        self._sync_status(model, obligation_id)

    @staticmethod
    def _sync_status(model, obligation_id: int) -> None:
        qs = model.objects.filter(pk=obligation_id).exclude(status__in=[model.Status.DRAFT, model.Status.VOID])
        qs.filter(balance=0).update(status=model.Status.PAID)
        qs.filter(balance__gt=0, amount_paid=0).update(status=model.Status.OPEN)
        qs.filter(balance__gt=0, amount_paid__gt=0).update(status=model.Status.PARTIAL)


class InMemoryLedger(ObligationLedger):
    """Thread-safe in-process ledger, keyed by (obligation_type, obligation_id)."""

    def __init__(self, obligations: Iterable[Obligation] = ()):
        self._lock = threading.Lock()
        self._obligations: Dict[Tuple[str, int], Obligation] = {}
        self._original: Dict[Tuple[str, int], Decimal] = {}
        for obligation in obligations:
            self.add(obligation)

    def add(self, obligation: Obligation) -> None:
        with self._lock:
            self._obligations[obligation.key] = obligation
            self._original[obligation.key] = obligation.amount_due

    def original_amount(self, obligation_type: str, obligation_id: int) -> Decimal:
        return self._original[(obligation_type, obligation_id)]

    def list_outstanding_obligations(self, business, obligation_type: str, window: DateWindow) -> List[Obligation]:
        business_id = getattr(business, "pk", business)
        with self._lock:
            rows = [
                ob
                for ob in self._obligations.values()
                if ob.business_id == business_id
                and ob.obligation_type == obligation_type
                and ob.amount_due > 0
                and ob.anchor_date is not None
                and ob.anchor_date in window
            ]
        return sorted(rows, key=lambda ob: (ob.due_date or date.max, ob.obligation_id))

    def get_obligation(self, business, obligation_type: str, obligation_id: int) -> Obligation:
        business_id = getattr(business, "pk", business)
        with self._lock:
            obligation = self._obligations.get((obligation_type, obligation_id))
        if obligation is None or obligation.business_id != business_id:
            raise ObligationNotFound(obligation_type=obligation_type, obligation_id=obligation_id)
        return obligation

    def record_settlement(self, obligation_type: str, obligation_id: int, amount: Decimal) -> LedgerOutcome:
        key = (obligation_type, obligation_id)
        with self._lock:
            obligation = self._obligations.get(key)
            if obligation is None:
                raise ObligationNotFound(obligation_type=obligation_type, obligation_id=obligation_id)
            if obligation.amount_due < amount:
                return LedgerOutcome.INSUFFICIENT_BALANCE
            self._obligations[key] = replace(obligation, amount_due=obligation.amount_due - amount)
        return LedgerOutcome.OK

    def release_settlement(self, obligation_type: str, obligation_id: int, amount: Decimal) -> None:
        key = (obligation_type, obligation_id)
        with self._lock:
            obligation = self._obligations.get(key)
            if obligation is None:
                raise ObligationNotFound(obligation_type=obligation_type, obligation_id=obligation_id)
            self._obligations[key] = replace(obligation, amount_due=obligation.amount_due + amount)


def get_ledger() -> ObligationLedger:
    """Instantiate the ledger backend configured in ``BANK_RECONCILIATION``."""
    backend = settings.BANK_RECONCILIATION.get("LEDGER_BACKEND", "banking.services.ledger.DocumentLedger")
    return import_string(backend)()
