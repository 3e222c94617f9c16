from decimal import Decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="BankAccount",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(help_text="e.g. 'SEB Business Checking'", max_length=255)),
                ("bank_name", models.CharField(blank=True, max_length=255)),
                (
                    "account_number_mask",
                    models.CharField(blank=True, help_text="Last 4 digits, e.g. '1234'", max_length=4),
                ),
                (
                    "currency",
                    models.CharField(help_text="Default currency for rows that do not carry one.", max_length=3),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("last_imported_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="bank_accounts", to="core.business"
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
                "unique_together": {("business", "name")},
            },
        ),
        migrations.CreateModel(
            name="ImportBatch",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("source_checksum", models.CharField(db_index=True, max_length=64)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PROCESSING", "Processing"),
                            ("COMPLETED", "Completed"),
                            ("CANCELLED", "Cancelled"),
                            ("FAILED", "Failed"),
                        ],
                        db_index=True,
                        default="PROCESSING",
                        max_length=20,
                    ),
                ),
                ("imported_count", models.PositiveIntegerField(default=0)),
                ("duplicate_count", models.PositiveIntegerField(default=0)),
                ("error_count", models.PositiveIntegerField(default=0)),
                ("errors", models.JSONField(blank=True, default=list)),
                ("transactions_matched", models.PositiveIntegerField(default=0)),
                ("imported_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "bank_account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="import_batches",
                        to="banking.bankaccount",
                    ),
                ),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bank_import_batches",
                        to="core.business",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="bank_import_batches",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-imported_at", "-id"],
                "verbose_name_plural": "import batches",
            },
        ),
        migrations.CreateModel(
            name="BankTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("posted_date", models.DateField(db_index=True)),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2, help_text="Positive = inflow, negative = outflow", max_digits=19
                    ),
                ),
                ("currency", models.CharField(max_length=3)),
                ("description", models.CharField(blank=True, max_length=512)),
                ("normalized_description", models.CharField(blank=True, max_length=512)),
                ("counterparty_name", models.CharField(blank=True, max_length=255)),
                ("normalized_counterparty", models.CharField(blank=True, max_length=255)),
                ("reference", models.CharField(blank=True, max_length=255)),
                ("normalized_reference", models.CharField(blank=True, db_index=True, max_length=255)),
                ("external_id", models.CharField(blank=True, default="", max_length=255)),
                (
                    "fingerprint",
                    models.CharField(help_text="sha256 identity used for deduplication", max_length=64),
                ),
                (
                    "state",
                    models.CharField(
                        choices=[
                            ("UNMATCHED", "Unmatched"),
                            ("SUGGESTED", "Suggested"),
                            ("MATCHED", "Matched"),
                        ],
                        db_index=True,
                        default="UNMATCHED",
                        max_length=20,
                    ),
                ),
                (
                    "settled_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Absolute amount already applied to obligations.",
                        max_digits=19,
                    ),
                ),
                ("version", models.PositiveIntegerField(default=0)),
                ("reversal_count", models.PositiveIntegerField(default=0)),
                ("suggestion_confidence", models.DecimalField(blank=True, decimal_places=4, max_digits=5, null=True)),
                ("suggestion_reason", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "bank_account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transactions",
                        to="banking.bankaccount",
                    ),
                ),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bank_transactions",
                        to="core.business",
                    ),
                ),
                (
                    "import_batch",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="transactions",
                        to="banking.importbatch",
                    ),
                ),
            ],
            options={
                "ordering": ["-posted_date", "-id"],
                "indexes": [
                    models.Index(fields=["bank_account", "state", "posted_date"], name="bank_tx_account_state_date_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("bank_account", "fingerprint"), name="uniq_bank_tx_fingerprint_per_account"
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("external_id", ""), _negated=True),
                        fields=("bank_account", "external_id"),
                        name="uniq_bank_tx_external_id_per_account",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount", 0), _negated=True), name="bank_tx_amount_not_zero"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("settled_amount__gte", 0)), name="bank_tx_settled_not_negative"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("amount__gt", 0), ("settled_amount__lte", models.F("amount"))),
                            models.Q(("amount__lt", 0), ("settled_amount__lte", -models.F("amount"))),
                            _connector="OR",
                        ),
                        name="bank_tx_settled_within_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Settlement",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "obligation_type",
                    models.CharField(
                        choices=[("RECEIVABLE", "Receivable (invoice)"), ("PAYABLE", "Payable (bill)")],
                        max_length=12,
                    ),
                ),
                ("obligation_id", models.BigIntegerField()),
                (
                    "kind",
                    models.CharField(
                        choices=[("APPLICATION", "Application"), ("REVERSAL", "Reversal")],
                        default="APPLICATION",
                        max_length=12,
                    ),
                ),
                ("amount_applied", models.DecimalField(decimal_places=2, max_digits=19)),
                ("currency", models.CharField(max_length=3)),
                (
                    "is_full",
                    models.BooleanField(
                        default=False,
                        help_text="True when this application settled the rest of the transaction.",
                    ),
                ),
                (
                    "cycle",
                    models.PositiveIntegerField(
                        default=0, help_text="Transaction reversal_count at the time of writing."
                    ),
                ),
                ("confidence", models.DecimalField(blank=True, decimal_places=4, max_digits=5, null=True)),
                ("cross_currency", models.BooleanField(default=False)),
                ("applied_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor",
                    models.CharField(help_text="'auto' or the username that confirmed the match.", max_length=150),
                ),
                ("note", models.CharField(blank=True, max_length=255)),
                (
                    "applied_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="bank_settlements",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bank_settlements",
                        to="core.business",
                    ),
                ),
                (
                    "reverses",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reversed_by",
                        to="banking.settlement",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlements",
                        to="banking.banktransaction",
                    ),
                ),
            ],
            options={
                "ordering": ["-applied_at", "-id"],
                "indexes": [
                    models.Index(fields=["obligation_type", "obligation_id"], name="settlement_obligation_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_applied__gt", 0)), name="settlement_amount_positive"
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("kind", "APPLICATION"), ("is_full", True)),
                        fields=("transaction", "cycle"),
                        name="uniq_full_settlement_per_transaction",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("kind", "APPLICATION"), ("reverses__isnull", True)),
                            models.Q(("kind", "REVERSAL"), ("reverses__isnull", False)),
                            _connector="OR",
                        ),
                        name="settlement_reversal_has_target",
                    ),
                ],
            },
        ),
    ]
