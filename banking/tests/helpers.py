from datetime import date
from decimal import Decimal

from django.contrib.auth import get_user_model

from banking.exceptions import ObligationSourceUnavailable
from banking.models import BankAccount
from banking.services.ledger import InMemoryLedger
from core.models import Bill, Business, Customer, Invoice, Supplier

User = get_user_model()


def make_workspace(username: str = "owner", currency: str = "EUR"):
    user = User.objects.create_user(username=username, email=f"{username}@example.com", password="testpass123")
    business = Business.objects.create(name=f"{username.title()} Co", currency=currency, owner_user=user)
    bank_account = BankAccount.objects.create(
        business=business,
        name="Operating",
        bank_name="SEB",
        currency=currency,
    )
    return user, business, bank_account


def make_invoice(business, customer_name: str, number: str, total: str, *, due: date, currency: str = "EUR") -> Invoice:
    customer, _ = Customer.objects.get_or_create(business=business, name=customer_name)
    return Invoice.objects.create(
        business=business,
        customer=customer,
        invoice_number=number,
        currency=currency,
        issue_date=date(due.year, due.month, 1),
        due_date=due,
        grand_total=Decimal(total),
    )


def make_bill(business, supplier_name: str, number: str, total: str, *, due: date, currency: str = "EUR") -> Bill:
    supplier, _ = Supplier.objects.get_or_create(business=business, name=supplier_name)
    return Bill.objects.create(
        business=business,
        supplier=supplier,
        bill_number=number,
        currency=currency,
        issue_date=date(due.year, due.month, 1),
        due_date=due,
        grand_total=Decimal(total),
    )


def row(day: str, amount: str, description: str = "", **extra) -> dict:
    data = {"date": day, "amount": amount, "description": description}
    data.update(extra)
    return data


class UnavailableLedger(InMemoryLedger):
    """Ledger whose obligation listing is always down."""

    def list_outstanding_obligations(self, business, obligation_type, window):
        raise ObligationSourceUnavailable("ledger offline")
