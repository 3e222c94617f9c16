from datetime import date
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from banking.models import BankTransaction
from banking.services.ledger import DocumentLedger
from banking.services.reconciliation import ReconciliationService
from banking.tests.helpers import make_invoice, make_workspace, row


class BankAutoMatchCommandTests(TestCase):
    def setUp(self):
        self.user, self.business, self.account = make_workspace()
        make_invoice(self.business, "Nordic Solutions AS", "INV-2024-007", "1500.00", due=date(2024, 3, 1))
        ReconciliationService(ledger=DocumentLedger()).import_batch(
            self.business, self.account, [row("2024-03-10", "1500.00", "Nordic Solutions AS INV-2024-007")]
        )

    def test_matches_open_transactions(self):
        out = StringIO()
        call_command("bank_auto_match", stdout=out)

        self.assertIn("matched=1", out.getvalue())
        self.assertIn("Processed 1 account(s), 0 deferred.", out.getvalue())
        self.assertEqual(BankTransaction.objects.get().state, BankTransaction.State.MATCHED)

    def test_filters_by_account(self):
        out = StringIO()
        call_command("bank_auto_match", "--account", str(self.account.pk), "--business", str(self.business.pk), stdout=out)
        self.assertIn("matched=1", out.getvalue())

    def test_no_accounts(self):
        with self.assertRaises(CommandError):
            call_command("bank_auto_match", "--business", "999999", stdout=StringIO())

    @override_settings(BANK_RECONCILIATION={"LEDGER_BACKEND": "banking.tests.helpers.UnavailableLedger"})
    def test_reports_deferred_accounts(self):
        out = StringIO()
        call_command("bank_auto_match", stdout=out)
        self.assertIn("deferred, ledger unavailable", out.getvalue())
        self.assertIn("1 deferred", out.getvalue())
        self.assertEqual(BankTransaction.objects.get().state, BankTransaction.State.UNMATCHED)
