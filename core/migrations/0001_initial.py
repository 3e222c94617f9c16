from decimal import Decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


def _document_fields():
    return [
        ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
        ("currency", models.CharField(max_length=3)),
        ("issue_date", models.DateField(default=django.utils.timezone.now)),
        ("due_date", models.DateField(blank=True, null=True)),
        (
            "status",
            models.CharField(
                choices=[
                    ("DRAFT", "Draft"),
                    ("OPEN", "Open"),
                    ("PARTIAL", "Partially paid"),
                    ("PAID", "Paid"),
                    ("VOID", "Void"),
                ],
                db_index=True,
                default="OPEN",
                max_length=10,
            ),
        ),
        ("description", models.TextField(blank=True)),
        ("grand_total", models.DecimalField(decimal_places=2, max_digits=19)),
        ("amount_paid", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=19)),
        ("balance", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=19)),
        ("created_at", models.DateTimeField(auto_now_add=True)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Business",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255, unique=True)),
                ("currency", models.CharField(max_length=3)),
                ("status", models.CharField(db_index=True, default="active", max_length=20)),
                ("is_deleted", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "owner_user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="businesses",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("email", models.EmailField(blank=True, max_length=255, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="customers", to="core.business"
                    ),
                ),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Supplier",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("email", models.EmailField(blank=True, max_length=254, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="suppliers", to="core.business"
                    ),
                ),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.AddConstraint(
            model_name="customer",
            constraint=models.UniqueConstraint(fields=("business", "name"), name="uniq_customer_per_business_name"),
        ),
        migrations.AddConstraint(
            model_name="supplier",
            constraint=models.UniqueConstraint(fields=("business", "name"), name="uniq_supplier_per_business_name"),
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=_document_fields()
            + [
                ("invoice_number", models.CharField(max_length=50)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="invoices", to="core.business"
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="invoices", to="core.customer"
                    ),
                ),
            ],
            options={
                "ordering": ["-issue_date"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("business", "invoice_number"), name="uniq_invoice_number_per_business"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("balance__gte", 0)), name="invoice_balance_not_negative"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Bill",
            fields=_document_fields()
            + [
                (
                    "bill_number",
                    models.CharField(
                        help_text="Supplier's document number, used as the payment reference.", max_length=50
                    ),
                ),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="bills", to="core.business"
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="bills", to="core.supplier"
                    ),
                ),
            ],
            options={
                "ordering": ["-issue_date"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("business", "supplier", "bill_number"), name="uniq_bill_number_per_supplier"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("balance__gte", 0)), name="bill_balance_not_negative"
                    ),
                ],
            },
        ),
    ]
