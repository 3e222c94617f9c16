from datetime import date
from decimal import Decimal
from unittest import mock

from django.db import DatabaseError
from django.test import TestCase, override_settings

from banking.exceptions import ObligationNotFound, ObligationSourceUnavailable
from banking.models import ObligationType
from banking.services.ledger import DateWindow, DocumentLedger, InMemoryLedger, LedgerOutcome, get_ledger
from banking.tests.helpers import make_bill, make_invoice, make_workspace
from core.models import Invoice

MARCH = DateWindow(start=date(2024, 3, 1), end=date(2024, 3, 31))


class DocumentLedgerTests(TestCase):
    def setUp(self):
        self.user, self.business, _ = make_workspace()
        self.ledger = DocumentLedger()
        self.invoice = make_invoice(self.business, "Nordic Solutions AS", "INV-1", "100.00", due=date(2024, 3, 15))

    def test_new_documents_start_open(self):
        self.assertEqual(self.invoice.balance, Decimal("100.00"))
        self.assertEqual(self.invoice.status, Invoice.Status.OPEN)

    def test_projection(self):
        obligation = self.ledger.get_obligation(self.business, ObligationType.RECEIVABLE, self.invoice.pk)
        self.assertEqual(obligation.reference, "INV-1")
        self.assertEqual(obligation.counterparty_name, "Nordic Solutions AS")
        self.assertEqual(obligation.amount_due, Decimal("100.00"))
        self.assertEqual(obligation.business_id, self.business.pk)

    def test_listing_skips_settled_void_and_out_of_window(self):
        paid = make_invoice(self.business, "Paid Ltd", "INV-2", "50.00", due=date(2024, 3, 10))
        self.ledger.record_settlement(ObligationType.RECEIVABLE, paid.pk, Decimal("50.00"))
        void = make_invoice(self.business, "Void Ltd", "INV-3", "50.00", due=date(2024, 3, 10))
        Invoice.objects.filter(pk=void.pk).update(status=Invoice.Status.VOID)
        make_invoice(self.business, "Later Ltd", "INV-4", "50.00", due=date(2024, 5, 10))
        no_due = make_invoice(self.business, "Undated Ltd", "INV-5", "50.00", due=date(2024, 3, 20))
        Invoice.objects.filter(pk=no_due.pk).update(due_date=None)
        make_bill(self.business, "Office Depot", "OD-1", "80.00", due=date(2024, 3, 10))

        listed = self.ledger.list_outstanding_obligations(self.business, ObligationType.RECEIVABLE, MARCH)

        self.assertCountEqual([o.obligation_id for o in listed], [self.invoice.pk, no_due.pk])

    def test_record_and_release_sync_status(self):
        self.assertEqual(
            self.ledger.record_settlement(ObligationType.RECEIVABLE, self.invoice.pk, Decimal("40.00")),
            LedgerOutcome.OK,
        )
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.Status.PARTIAL)
        self.assertEqual(
            self.ledger.record_settlement(ObligationType.RECEIVABLE, self.invoice.pk, Decimal("60.01")),
            LedgerOutcome.INSUFFICIENT_BALANCE,
        )

        self.ledger.release_settlement(ObligationType.RECEIVABLE, self.invoice.pk, Decimal("40.00"))
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.balance, Decimal("100.00"))
        self.assertEqual(self.invoice.status, Invoice.Status.OPEN)
        with self.assertRaises(ObligationNotFound):
            self.ledger.release_settlement(ObligationType.RECEIVABLE, self.invoice.pk, Decimal("1.00"))

    def test_unknown_type(self):
        with self.assertRaises(ObligationNotFound):
            self.ledger.get_obligation(self.business, "LOAN", self.invoice.pk)

    def test_database_failure_becomes_unavailable(self):
        with mock.patch.object(DocumentLedger, "_project", side_effect=DatabaseError("connection lost")):
            with self.assertRaises(ObligationSourceUnavailable):
                self.ledger.list_outstanding_obligations(self.business, ObligationType.RECEIVABLE, MARCH)

    def test_lookup_failure_becomes_unavailable(self):
        with mock.patch("django.db.models.query.QuerySet.first", side_effect=DatabaseError("connection lost")):
            with self.assertRaises(ObligationSourceUnavailable):
                self.ledger.get_obligation(self.business, ObligationType.RECEIVABLE, self.invoice.pk)


class LedgerBackendTests(TestCase):
    def test_default_backend(self):
        self.assertIsInstance(get_ledger(), DocumentLedger)

    @override_settings(BANK_RECONCILIATION={"LEDGER_BACKEND": "banking.services.ledger.InMemoryLedger"})
    def test_configured_backend(self):
        self.assertIsInstance(get_ledger(), InMemoryLedger)
