from rest_framework import serializers

from .models import BankTransaction, ImportBatch, Settlement


class BankTransactionSerializer(serializers.ModelSerializer):
    unsettled_amount = serializers.DecimalField(max_digits=19, decimal_places=2, read_only=True)

    class Meta:
        model = BankTransaction
        fields = [
            "id",
            "bank_account",
            "posted_date",
            "amount",
            "currency",
            "description",
            "counterparty_name",
            "reference",
            "external_id",
            "state",
            "settled_amount",
            "unsettled_amount",
            "suggestion_confidence",
            "suggestion_reason",
        ]
        read_only_fields = fields


class ImportBatchSerializer(serializers.ModelSerializer):
    class Meta:
        model = ImportBatch
        fields = [
            "id",
            "bank_account",
            "source_checksum",
            "status",
            "imported_count",
            "duplicate_count",
            "error_count",
            "errors",
            "transactions_matched",
            "imported_at",
            "completed_at",
        ]
        read_only_fields = fields


class SettlementSerializer(serializers.ModelSerializer):
    reverses_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = Settlement
        fields = [
            "id",
            "transaction",
            "obligation_type",
            "obligation_id",
            "kind",
            "amount_applied",
            "currency",
            "is_full",
            "cross_currency",
            "confidence",
            "reverses_id",
            "actor",
            "applied_at",
            "note",
        ]
        read_only_fields = fields


class MatchSuggestionSerializer(serializers.Serializer):
    """Serializes the ephemeral ``MatchSuggestion`` dataclass."""

    obligation_type = serializers.CharField()
    obligation_id = serializers.IntegerField()
    confidence = serializers.FloatField()
    outcome = serializers.CharField(source="outcome.value")
    amount_exact = serializers.BooleanField()
    cross_currency = serializers.BooleanField()
    components = serializers.DictField(child=serializers.FloatField())
    contributions = serializers.DictField(child=serializers.FloatField())
    explanation = serializers.ListField(child=serializers.CharField())
    counterparty_name = serializers.CharField(source="obligation.counterparty_name")
    reference = serializers.CharField(source="obligation.reference")
    currency = serializers.CharField(source="obligation.currency")
    amount_due = serializers.DecimalField(source="obligation.amount_due", max_digits=19, decimal_places=2)
    due_date = serializers.DateField(source="obligation.due_date", allow_null=True)


class ImportBatchResultSerializer(serializers.Serializer):
    batch_id = serializers.IntegerField()
    imported = serializers.IntegerField()
    duplicates = serializers.IntegerField()
    errors = serializers.ListField(child=serializers.DictField())
    cancelled = serializers.BooleanField()
    matched = serializers.IntegerField()
    source_checksum = serializers.CharField()


class AutoMatchResultSerializer(serializers.Serializer):
    matched = serializers.IntegerField()
    suggested = serializers.IntegerField()
    unmatched = serializers.IntegerField()
    deferred = serializers.BooleanField()
    failures = serializers.ListField(child=serializers.DictField())


class AccountSummarySerializer(serializers.Serializer):
    bank_account_id = serializers.IntegerField()
    total = serializers.IntegerField()
    unmatched = serializers.IntegerField()
    suggested = serializers.IntegerField()
    matched = serializers.IntegerField()
    settled_total = serializers.DecimalField(max_digits=19, decimal_places=2)
    unsettled_total = serializers.DecimalField(max_digits=19, decimal_places=2)
    last_import_id = serializers.IntegerField(allow_null=True)
    last_imported_at = serializers.DateTimeField(allow_null=True)
