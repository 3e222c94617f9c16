from datetime import date

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from banking.models import BankTransaction, ObligationType, Settlement
from banking.tests.helpers import make_invoice, make_workspace, row

User = get_user_model()

STATEMENT = [
    row("2024-03-10", "1500.00", "Nordic Solutions AS INV-2024-007"),
    row("2024-04-15", "250.00", "Baltic Commerce - April"),
]


class BankingAPITestCase(TestCase):
    def setUp(self):
        self.user, self.business, self.account = make_workspace("apiuser")
        self.client = APIClient()
        self.client.force_authenticate(self.user)
        self.invoice = make_invoice(
            self.business, "Nordic Solutions AS", "INV-2024-007", "1500.00", due=date(2024, 3, 1)
        )

    def _import(self, rows=STATEMENT, **extra):
        url = reverse("banking:import-batch", args=[self.account.pk])
        return self.client.post(url, {"rows": rows, **extra}, format="json")


class ImportAPITests(BankingAPITestCase):
    def test_import_reports_counts(self):
        res = self._import(rows=STATEMENT + [row("bad", "1.00")])
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["imported"], 2)
        self.assertEqual(res.data["duplicates"], 0)
        self.assertEqual(res.data["errors"][0]["row"], 2)
        self.assertEqual(res.data["errors"][0]["field"], "date")

        again = self._import()
        self.assertEqual((again.data["imported"], again.data["duplicates"]), (0, 2))

    def test_import_with_auto_match(self):
        res = self._import(auto_match=True)
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["matched"], 1)

    def test_unknown_payload_keys_are_rejected(self):
        res = self._import(mode="replace")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("errors", res.data)

    def test_foreign_account_is_not_found(self):
        _, _, other_account = make_workspace("stranger")
        url = reverse("banking:import-batch", args=[other_account.pk])
        res = self.client.post(url, {"rows": STATEMENT}, format="json")
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_requires_authentication(self):
        res = APIClient().post(reverse("banking:import-batch", args=[self.account.pk]), {"rows": []}, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_requires_a_workspace(self):
        loner = User.objects.create_user(username="loner", password="testpass123")
        client = APIClient()
        client.force_authenticate(loner)
        res = client.post(reverse("banking:import-batch", args=[self.account.pk]), {"rows": []}, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)


class ListingAPITests(BankingAPITestCase):
    def setUp(self):
        super().setUp()
        self.batch_id = self._import(auto_match=True).data["batch_id"]

    def test_list_imports(self):
        res = self.client.get(reverse("banking:import-batch", args=[self.account.pk]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        (batch,) = res.data["results"]
        self.assertEqual(batch["id"], self.batch_id)
        self.assertEqual(batch["status"], "COMPLETED")
        self.assertEqual(batch["imported_count"], 2)
        self.assertEqual(batch["transactions_matched"], 1)

    def test_list_transactions_newest_first(self):
        res = self.client.get(reverse("banking:transactions", args=[self.account.pk]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual([tx["posted_date"] for tx in res.data["results"]], ["2024-04-15", "2024-03-10"])

    def test_filter_transactions_by_state(self):
        url = reverse("banking:transactions", args=[self.account.pk])
        matched = self.client.get(url, {"state": "MATCHED"})
        self.assertEqual([tx["posted_date"] for tx in matched.data["results"]], ["2024-03-10"])
        self.assertEqual(matched.data["results"][0]["state"], "MATCHED")

        unmatched = self.client.get(url, {"state": "UNMATCHED"})
        self.assertEqual([tx["posted_date"] for tx in unmatched.data["results"]], ["2024-04-15"])

    def test_unknown_state_is_rejected(self):
        res = self.client.get(reverse("banking:transactions", args=[self.account.pk]), {"state": "LOST"})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data["code"], "reconciliation_error")

    def test_foreign_account_is_not_found(self):
        _, _, other_account = make_workspace("stranger")
        for name in ("banking:import-batch", "banking:transactions"):
            res = self.client.get(reverse(name, args=[other_account.pk]))
            self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)


class MatchingAPITests(BankingAPITestCase):
    def setUp(self):
        super().setUp()
        self._import()
        self.tx = BankTransaction.objects.get(bank_account=self.account, posted_date=date(2024, 3, 10))

    def test_suggestions(self):
        res = self.client.get(reverse("banking:suggestions", args=[self.tx.pk]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        (top,) = res.data["results"]
        self.assertEqual(top["obligation_id"], self.invoice.pk)
        self.assertEqual(top["outcome"], "AUTO")
        self.assertEqual(top["reference"], "INV-2024-007")
        self.assertEqual(set(top["components"]), {"amount", "reference", "counterparty", "date"})

    def test_unknown_transaction(self):
        res = self.client.get(reverse("banking:suggestions", args=[999999]))
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(res.data["code"], "transaction_not_found")

    def test_auto_match_and_summary(self):
        res = self.client.post(reverse("banking:auto-match", args=[self.account.pk]), format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["matched"], 1)
        self.assertFalse(res.data["deferred"])

        summary = self.client.get(reverse("banking:account-summary", args=[self.account.pk]))
        self.assertEqual(summary.status_code, status.HTTP_200_OK)
        self.assertEqual(summary.data["matched"], 1)
        self.assertEqual(summary.data["unmatched"], 1)
        self.assertEqual(summary.data["settled_total"], "1500.00")

    @override_settings(BANK_RECONCILIATION={"LEDGER_BACKEND": "banking.tests.helpers.UnavailableLedger"})
    def test_auto_match_deferred_when_ledger_down(self):
        res = self.client.post(reverse("banking:auto-match", args=[self.account.pk]), format="json")
        self.assertEqual(res.status_code, status.HTTP_202_ACCEPTED)
        self.assertTrue(res.data["deferred"])
        self.assertEqual(res.data["unmatched"], 2)


class SettlementAPITests(BankingAPITestCase):
    def setUp(self):
        super().setUp()
        self._import()
        self.tx = BankTransaction.objects.get(bank_account=self.account, posted_date=date(2024, 3, 10))
        self.apply_url = reverse("banking:apply-match", args=[self.tx.pk])

    def test_apply_then_conflict(self):
        payload = {"obligation_type": ObligationType.RECEIVABLE, "obligation_id": self.invoice.pk}
        res = self.client.post(self.apply_url, payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["amount_applied"], "1500.00")
        self.assertTrue(res.data["is_full"])
        self.assertEqual(res.data["actor"], "apiuser")

        again = self.client.post(self.apply_url, payload, format="json")
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.data["code"], "already_settled")

    def test_apply_validation(self):
        res = self.client.post(self.apply_url, {"obligation_type": "LOAN", "obligation_id": 1}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        res = self.client.post(
            self.apply_url,
            {"obligation_type": "RECEIVABLE", "obligation_id": self.invoice.pk, "amount": "-5"},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_apply_over_balance(self):
        res = self.client.post(
            self.apply_url,
            {"obligation_type": "RECEIVABLE", "obligation_id": self.invoice.pk, "amount": "1500.01"},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data["code"], "invalid_settlement_amount")
        self.assertFalse(Settlement.objects.exists())

    def test_reverse(self):
        applied = self.client.post(
            self.apply_url,
            {"obligation_type": "RECEIVABLE", "obligation_id": self.invoice.pk},
            format="json",
        )
        url = reverse("banking:reverse-settlement", args=[applied.data["id"]])

        res = self.client.post(url, {"note": "wrong invoice"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["kind"], Settlement.Kind.REVERSAL)
        self.assertEqual(res.data["reverses_id"], applied.data["id"])

        again = self.client.post(url, {}, format="json")
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.data["code"], "settlement_already_reversed")

    def test_reject_suggestions(self):
        other = BankTransaction.objects.get(bank_account=self.account, posted_date=date(2024, 4, 15))
        BankTransaction.objects.filter(pk=other.pk).update(state=BankTransaction.State.SUGGESTED)

        res = self.client.post(reverse("banking:reject-suggestions", args=[other.pk]), format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["state"], BankTransaction.State.UNMATCHED)
