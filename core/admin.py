from django.contrib import admin

from .models import Bill, Business, Customer, Invoice, Supplier


admin.site.site_header = "LedgerMatch System Admin"
admin.site.site_title = "LedgerMatch System Admin"


def _superuser_only(request):
    return request.user.is_active and request.user.is_superuser


admin.site.has_permission = _superuser_only


@admin.register(Business)
class BusinessAdmin(admin.ModelAdmin):
    list_display = ("name", "currency", "owner_user", "status", "created_at")
    search_fields = ("name",)


@admin.register(Customer, Supplier)
class CounterpartyAdmin(admin.ModelAdmin):
    list_display = ("name", "business", "email")
    list_filter = ("business",)
    search_fields = ("name",)


class ObligationDocumentAdmin(admin.ModelAdmin):
    list_filter = ("status", "currency", "business")
    # Balances move only through bank settlements.
    readonly_fields = ("amount_paid", "balance")


@admin.register(Invoice)
class InvoiceAdmin(ObligationDocumentAdmin):
    list_display = ("invoice_number", "customer", "currency", "grand_total", "balance", "due_date", "status")
    search_fields = ("invoice_number", "customer__name")


@admin.register(Bill)
class BillAdmin(ObligationDocumentAdmin):
    list_display = ("bill_number", "supplier", "currency", "grand_total", "balance", "due_date", "status")
    search_fields = ("bill_number", "supplier__name")
