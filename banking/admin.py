from django.contrib import admin

from .models import BankAccount, BankTransaction, ImportBatch, Settlement


@admin.register(BankAccount)
class BankAccountAdmin(admin.ModelAdmin):
    list_display = ("name", "business", "bank_name", "currency", "is_active", "last_imported_at")
    list_filter = ("is_active", "currency")
    search_fields = ("name", "bank_name")


@admin.register(BankTransaction)
class BankTransactionAdmin(admin.ModelAdmin):
    list_display = ("posted_date", "bank_account", "amount", "currency", "counterparty_name", "state", "settled_amount")
    list_filter = ("state", "currency", "bank_account")
    search_fields = ("description", "counterparty_name", "reference", "external_id")
    readonly_fields = ("fingerprint", "settled_amount", "version", "reversal_count", "state")


@admin.register(ImportBatch)
class ImportBatchAdmin(admin.ModelAdmin):
    list_display = ("id", "bank_account", "status", "imported_count", "duplicate_count", "error_count", "imported_at")
    list_filter = ("status",)

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(Settlement)
class SettlementAdmin(admin.ModelAdmin):
    list_display = ("id", "kind", "transaction", "obligation_type", "obligation_id", "amount_applied", "actor", "applied_at")
    list_filter = ("kind", "obligation_type")

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
