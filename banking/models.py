from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q

if TYPE_CHECKING:
    from django.db.models import Manager


class ObligationType(models.TextChoices):
    RECEIVABLE = "RECEIVABLE", "Receivable (invoice)"
    PAYABLE = "PAYABLE", "Payable (bill)"


class BankAccount(models.Model):
    """
    Bank / wallet / card account that statement rows are imported into.
    Fingerprints and external ids are unique per account.
    """

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="bank_accounts",
    )
    name = models.CharField(
        max_length=255,
        help_text="e.g. 'SEB Business Checking'",
    )
    bank_name = models.CharField(max_length=255, blank=True)
    account_number_mask = models.CharField(
        max_length=4,
        blank=True,
        help_text="Last 4 digits, e.g. '1234'",
    )
    currency = models.CharField(
        max_length=3,
        help_text="Default currency for rows that do not carry one.",
    )
    is_active = models.BooleanField(default=True)
    last_imported_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = [("business", "name")]
        ordering = ["name"]

    def __str__(self):
        mask = f" ••••{self.account_number_mask}" if self.account_number_mask else ""
        return f"{self.name}{mask}"

    if TYPE_CHECKING:
        id: int
        business_id: int
        transactions: Manager["BankTransaction"]
        import_batches: Manager["ImportBatch"]


class ImportBatch(models.Model):
    """One call to import a parsed statement. Frozen once it leaves PROCESSING."""

    class Status(models.TextChoices):
        PROCESSING = "PROCESSING", "Processing"
        COMPLETED = "COMPLETED", "Completed"
        CANCELLED = "CANCELLED", "Cancelled"
        FAILED = "FAILED", "Failed"

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="bank_import_batches",
    )
    bank_account = models.ForeignKey(
        BankAccount,
        on_delete=models.CASCADE,
        related_name="import_batches",
    )
    source_checksum = models.CharField(max_length=64, db_index=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PROCESSING,
        db_index=True,
    )
    imported_count = models.PositiveIntegerField(default=0)
    duplicate_count = models.PositiveIntegerField(default=0)
    error_count = models.PositiveIntegerField(default=0)
    errors = models.JSONField(default=list, blank=True)
    transactions_matched = models.PositiveIntegerField(default=0)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bank_import_batches",
    )
    imported_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-imported_at", "-id"]
        verbose_name_plural = "import batches"

    def __str__(self):
        return f"{self.bank_account.name} import @ {self.imported_at:%Y-%m-%d %H:%M}"

    @property
    def is_finished(self) -> bool:
        return self.status != self.Status.PROCESSING

    def save(self, *args, **kwargs):
        if not self._state.adding:
            stored = ImportBatch.objects.filter(pk=self.pk).values_list("status", flat=True).first()
            if stored and stored != self.Status.PROCESSING:
                raise ValidationError("Import batch is immutable once completed.")
        super().save(*args, **kwargs)

    if TYPE_CHECKING:
        id: int
        bank_account_id: int


class BankTransaction(models.Model):
    class State(models.TextChoices):
        UNMATCHED = "UNMATCHED", "Unmatched"
        SUGGESTED = "SUGGESTED", "Suggested"
        MATCHED = "MATCHED", "Matched"

    OPEN_STATES = (State.UNMATCHED, State.SUGGESTED)

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="bank_transactions",
    )
    bank_account = models.ForeignKey(
        BankAccount,
        on_delete=models.CASCADE,
        related_name="transactions",
    )
    import_batch = models.ForeignKey(
        ImportBatch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="transactions",
    )
    posted_date = models.DateField(db_index=True)
    amount = models.DecimalField(
        max_digits=19,
        decimal_places=2,
        help_text="Positive = inflow, negative = outflow",
    )
    currency = models.CharField(max_length=3)
    description = models.CharField(max_length=512, blank=True)
    normalized_description = models.CharField(max_length=512, blank=True)
    counterparty_name = models.CharField(max_length=255, blank=True)
    normalized_counterparty = models.CharField(max_length=255, blank=True)
    reference = models.CharField(max_length=255, blank=True)
    normalized_reference = models.CharField(max_length=255, blank=True, db_index=True)
    external_id = models.CharField(max_length=255, blank=True, default="")
    fingerprint = models.CharField(
        max_length=64,
        help_text="sha256 identity used for deduplication",
    )
    state = models.CharField(
        max_length=20,
        choices=State.choices,
        default=State.UNMATCHED,
        db_index=True,
    )
    settled_amount = models.DecimalField(
        max_digits=19,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Absolute amount already applied to obligations.",
    )
    version = models.PositiveIntegerField(default=0)
    reversal_count = models.PositiveIntegerField(default=0)
    suggestion_confidence = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        null=True,
        blank=True,
    )
    suggestion_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-posted_date", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["bank_account", "fingerprint"],
                name="uniq_bank_tx_fingerprint_per_account",
            ),
            models.UniqueConstraint(
                fields=["bank_account", "external_id"],
                condition=~Q(external_id=""),
                name="uniq_bank_tx_external_id_per_account",
            ),
            models.CheckConstraint(
                condition=~Q(amount=0),
                name="bank_tx_amount_not_zero",
            ),
            models.CheckConstraint(
                condition=Q(settled_amount__gte=0),
                name="bank_tx_settled_not_negative",
            ),
            models.CheckConstraint(
                condition=Q(amount__gt=0, settled_amount__lte=F("amount"))
                | Q(amount__lt=0, settled_amount__lte=-F("amount")),
                name="bank_tx_settled_within_amount",
            ),
        ]
        indexes = [
            models.Index(fields=["bank_account", "state", "posted_date"], name="bank_tx_account_state_date_idx"),
        ]

    def __str__(self):
        return f"{self.posted_date} {self.amount} {self.currency} - {self.description}"

    @property
    def is_inflow(self) -> bool:
        return self.amount > 0

    @property
    def absolute_amount(self) -> Decimal:
        return abs(self.amount)

    @property
    def unsettled_amount(self) -> Decimal:
        return self.absolute_amount - self.settled_amount

    if TYPE_CHECKING:
        id: int
        business_id: int
        bank_account_id: int
        settlements: Manager["Settlement"]


class Settlement(models.Model):
    """
    Append-only record that (part of) a bank transaction paid an obligation.

    A reversal never edits the original row; it adds a REVERSAL row pointing at it.
    """

    class Kind(models.TextChoices):
        APPLICATION = "APPLICATION", "Application"
        REVERSAL = "REVERSAL", "Reversal"

    AUTO_ACTOR = "auto"

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="bank_settlements",
    )
    transaction = models.ForeignKey(
        BankTransaction,
        on_delete=models.PROTECT,
        related_name="settlements",
    )
    obligation_type = models.CharField(max_length=12, choices=ObligationType.choices)
    obligation_id = models.BigIntegerField()
    kind = models.CharField(
        max_length=12,
        choices=Kind.choices,
        default=Kind.APPLICATION,
    )
    amount_applied = models.DecimalField(max_digits=19, decimal_places=2)
    currency = models.CharField(max_length=3)
    is_full = models.BooleanField(
        default=False,
        help_text="True when this application settled the rest of the transaction.",
    )
    cycle = models.PositiveIntegerField(
        default=0,
        help_text="Transaction reversal_count at the time of writing.",
    )
    reverses = models.OneToOneField(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="reversed_by",
    )
    confidence = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        null=True,
        blank=True,
    )
    cross_currency = models.BooleanField(default=False)
    applied_at = models.DateTimeField(auto_now_add=True)
    applied_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bank_settlements",
    )
    actor = models.CharField(
        max_length=150,
        help_text="'auto' or the username that confirmed the match.",
    )
    note = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["-applied_at", "-id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_applied__gt=0),
                name="settlement_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["transaction", "cycle"],
                condition=Q(kind="APPLICATION", is_full=True),
                name="uniq_full_settlement_per_transaction",
            ),
            models.CheckConstraint(
                condition=Q(kind="APPLICATION", reverses__isnull=True)
                | Q(kind="REVERSAL", reverses__isnull=False),
                name="settlement_reversal_has_target",
            ),
        ]
        indexes = [
            models.Index(fields=["obligation_type", "obligation_id"], name="settlement_obligation_idx"),
        ]

    def __str__(self):
        return f"{self.kind} {self.amount_applied} {self.currency} tx={self.transaction_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Settlements are append-only; record a reversal instead.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Settlements are append-only; record a reversal instead.")

    @property
    def is_reversed(self) -> bool:
        return Settlement.objects.filter(reverses=self).exists()

    if TYPE_CHECKING:
        id: int
        transaction_id: int
        reverses_id: Optional[int]
