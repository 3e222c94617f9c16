from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from django.conf import settings
from django.db import models
from django.utils import timezone

if TYPE_CHECKING:
    from django.db.models import Manager


class Business(models.Model):
    """A tenant. Every bank account, document and settlement is scoped to one."""

    name = models.CharField(max_length=255, unique=True)
    currency = models.CharField(max_length=3)
    owner_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="businesses",
    )
    status = models.CharField(max_length=20, default="active", db_index=True)
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    if TYPE_CHECKING:
        id: int
        invoices: Manager["Invoice"]
        bills: Manager["Bill"]


class Customer(models.Model):
    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="customers",
    )
    name = models.CharField(max_length=255)
    email = models.EmailField(max_length=255, blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "name"],
                name="uniq_customer_per_business_name",
            )
        ]

    def __str__(self):
        return self.name


class Supplier(models.Model):
    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="suppliers",
    )
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "name"],
                name="uniq_supplier_per_business_name",
            )
        ]

    def __str__(self):
        return self.name


class ObligationDocument(models.Model):
    """
    Shared shape of an invoice or a bill: something with an amount still owed.

    ``balance`` is the remaining amount due. It is only decremented through the
    bank reconciliation ledger (a guarded conditional update), never by editing
    the document after it has been issued.
    """

    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        OPEN = "OPEN", "Open"
        PARTIAL = "PARTIAL", "Partially paid"
        PAID = "PAID", "Paid"
        VOID = "VOID", "Void"

    currency = models.CharField(max_length=3)
    issue_date = models.DateField(default=timezone.now)
    due_date = models.DateField(blank=True, null=True)
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.OPEN,
        db_index=True,
    )
    description = models.TextField(blank=True)
    grand_total = models.DecimalField(max_digits=19, decimal_places=2)
    amount_paid = models.DecimalField(
        max_digits=19,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    balance = models.DecimalField(
        max_digits=19,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        abstract = True

    def _recalc_payment_state(self):
        total = self.grand_total or Decimal("0.00")
        paid = max(Decimal("0.00"), min(self.amount_paid or Decimal("0.00"), total))
        self.amount_paid = paid
        self.balance = total - paid
        if self.status in (self.Status.VOID, self.Status.DRAFT):
            return
        if self.balance == 0:
            self.status = self.Status.PAID
        elif self.balance == total:
            self.status = self.Status.OPEN
        else:
            self.status = self.Status.PARTIAL

    def save(self, *args, **kwargs):
        if self._state.adding:
            self._recalc_payment_state()
        super().save(*args, **kwargs)

    @property
    def reference(self) -> str:
        raise NotImplementedError

    @property
    def counterparty_name(self) -> str:
        raise NotImplementedError


class Invoice(ObligationDocument):
    """A receivable: money a customer owes the business."""

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="invoices",
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    invoice_number = models.CharField(max_length=50)

    class Meta:
        ordering = ["-issue_date"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "invoice_number"],
                name="uniq_invoice_number_per_business",
            ),
            models.CheckConstraint(
                condition=models.Q(balance__gte=0),
                name="invoice_balance_not_negative",
            ),
        ]

    def __str__(self):
        return f"Invoice {self.invoice_number}"

    @property
    def reference(self) -> str:
        return self.invoice_number

    @property
    def counterparty_name(self) -> str:
        return self.customer.name if self.customer_id else ""

    if TYPE_CHECKING:
        id: int
        customer_id: Optional[int]


class Bill(ObligationDocument):
    """A payable: money the business owes a supplier."""

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="bills",
    )
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        related_name="bills",
    )
    bill_number = models.CharField(
        max_length=50,
        help_text="Supplier's document number, used as the payment reference.",
    )

    class Meta:
        ordering = ["-issue_date"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "supplier", "bill_number"],
                name="uniq_bill_number_per_supplier",
            ),
            models.CheckConstraint(
                condition=models.Q(balance__gte=0),
                name="bill_balance_not_negative",
            ),
        ]

    def __str__(self):
        return f"Bill {self.bill_number}"

    @property
    def reference(self) -> str:
        return self.bill_number

    @property
    def counterparty_name(self) -> str:
        return self.supplier.name if self.supplier_id else ""

    if TYPE_CHECKING:
        id: int
        supplier_id: Optional[int]
