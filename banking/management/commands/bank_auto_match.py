"""
Run the bank auto-match pass for active bank accounts.

Usage:
    python manage.py bank_auto_match
    python manage.py bank_auto_match --business 3
    python manage.py bank_auto_match --account 12 --account 14
"""
from django.core.management.base import BaseCommand, CommandError

from banking.models import BankAccount
from banking.services.reconciliation import ReconciliationService


class Command(BaseCommand):
    help = "Auto-match open bank transactions against outstanding invoices and bills."

    def add_arguments(self, parser):
        parser.add_argument("--business", type=int, help="Only accounts of this business id.")
        parser.add_argument("--account", type=int, action="append", help="Bank account id (repeatable).")

    def handle(self, *args, **options):
        accounts = BankAccount.objects.filter(is_active=True).select_related("business").order_by("business_id", "id")
        if options.get("business"):
            accounts = accounts.filter(business_id=options["business"])
        if options.get("account"):
            accounts = accounts.filter(pk__in=options["account"])
        if not accounts.exists():
            raise CommandError("No matching active bank accounts.")

        service = ReconciliationService()
        deferred = 0
        for account in accounts:
            result = service.auto_match(account.business, account)
            if result.deferred:
                deferred += 1
                self.stdout.write(self.style.WARNING(f"{account}: deferred, ledger unavailable"))
                continue
            self.stdout.write(
                f"{account}: matched={result.matched} suggested={result.suggested} unmatched={result.unmatched}"
            )

        summary = f"Processed {accounts.count()} account(s), {deferred} deferred."
        self.stdout.write(self.style.SUCCESS(summary))
