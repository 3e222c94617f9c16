from __future__ import annotations

from pydantic import ValidationError as PydanticValidationError
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from banking.commands import ApplyMatchCommand, ImportBatchCommand, ReverseSettlementCommand
from banking.exceptions import ReconciliationError
from banking.models import BankAccount
from banking.serializers import (
    AccountSummarySerializer,
    AutoMatchResultSerializer,
    BankTransactionSerializer,
    ImportBatchResultSerializer,
    ImportBatchSerializer,
    MatchSuggestionSerializer,
    SettlementSerializer,
)
from banking.services.reconciliation import ReconciliationService
from core.utils import get_current_business


def _deny(message: str = "Permission denied"):
    return Response({"detail": message}, status=status.HTTP_403_FORBIDDEN)


def _error_response(exc: ReconciliationError) -> Response:
    return Response(exc.as_dict(), status=exc.http_status)


def _invalid_payload(exc: PydanticValidationError) -> Response:
    return Response(
        {"detail": "Invalid payload.", "errors": exc.errors(include_url=False, include_context=False)},
        status=status.HTTP_400_BAD_REQUEST,
    )


class BankingAPIView(APIView):
    """Resolves the caller's workspace and maps reconciliation errors to responses."""

    permission_classes = [permissions.IsAuthenticated]

    def get_service(self) -> ReconciliationService:
        return ReconciliationService()

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        self.business = get_current_business(request.user)

    def handle_exception(self, exc):
        if isinstance(exc, ReconciliationError):
            return _error_response(exc)
        return super().handle_exception(exc)

    def _bank_account(self, account_id: int):
        return BankAccount.objects.filter(pk=account_id, business=self.business).first()


class ImportBatchView(BankingAPIView):
    def get(self, request, account_id: int):
        if not self.business:
            return _deny("No active workspace.")
        bank_account = self._bank_account(account_id)
        if not bank_account:
            return Response({"detail": "Bank account not found."}, status=status.HTTP_404_NOT_FOUND)
        batches = self.get_service().list_import_batches(self.business, bank_account)
        return Response({"results": ImportBatchSerializer(batches, many=True).data})

    def post(self, request, account_id: int):
        if not self.business:
            return _deny("No active workspace.")
        bank_account = self._bank_account(account_id)
        if not bank_account:
            return Response({"detail": "Bank account not found."}, status=status.HTTP_404_NOT_FOUND)
        try:
            command = ImportBatchCommand.model_validate(request.data)
        except PydanticValidationError as exc:
            return _invalid_payload(exc)

        result = self.get_service().import_batch(
            self.business,
            bank_account,
            command.rows,
            source_checksum=command.source_checksum,
            actor=request.user,
            auto_match=command.auto_match,
        )
        return Response(ImportBatchResultSerializer(result).data, status=status.HTTP_201_CREATED)


class AutoMatchView(BankingAPIView):
    def post(self, request, account_id: int):
        if not self.business:
            return _deny("No active workspace.")
        bank_account = self._bank_account(account_id)
        if not bank_account:
            return Response({"detail": "Bank account not found."}, status=status.HTTP_404_NOT_FOUND)

        result = self.get_service().auto_match(self.business, bank_account, actor=request.user)
        code = status.HTTP_202_ACCEPTED if result.deferred else status.HTTP_200_OK
        return Response(AutoMatchResultSerializer(result).data, status=code)


class TransactionListView(BankingAPIView):
    def get(self, request, account_id: int):
        if not self.business:
            return _deny("No active workspace.")
        bank_account = self._bank_account(account_id)
        if not bank_account:
            return Response({"detail": "Bank account not found."}, status=status.HTTP_404_NOT_FOUND)
        transactions = self.get_service().list_transactions(
            self.business, bank_account, state=request.query_params.get("state")
        )
        return Response({"results": BankTransactionSerializer(transactions, many=True).data})


class AccountSummaryView(BankingAPIView):
    def get(self, request, account_id: int):
        if not self.business:
            return _deny("No active workspace.")
        bank_account = self._bank_account(account_id)
        if not bank_account:
            return Response({"detail": "Bank account not found."}, status=status.HTTP_404_NOT_FOUND)
        summary = self.get_service().account_summary(self.business, bank_account)
        return Response(AccountSummarySerializer(summary).data)


class SuggestionsView(BankingAPIView):
    def get(self, request, transaction_id: int):
        if not self.business:
            return _deny("No active workspace.")
        suggestions = self.get_service().get_suggestions(transaction_id, business=self.business)
        return Response({"results": MatchSuggestionSerializer(suggestions, many=True).data})


class ApplyMatchView(BankingAPIView):
    def post(self, request, transaction_id: int):
        if not self.business:
            return _deny("No active workspace.")
        try:
            command = ApplyMatchCommand.model_validate(request.data)
        except PydanticValidationError as exc:
            return _invalid_payload(exc)

        settlement = self.get_service().apply_match(
            transaction_id,
            command.obligation_type,
            command.obligation_id,
            amount=command.amount,
            actor=request.user,
            allow_cross_currency=command.allow_cross_currency,
            business=self.business,
            note=command.note,
        )
        return Response(SettlementSerializer(settlement).data, status=status.HTTP_201_CREATED)


class RejectSuggestionsView(BankingAPIView):
    def post(self, request, transaction_id: int):
        if not self.business:
            return _deny("No active workspace.")
        tx = self.get_service().reject_suggestions(transaction_id, actor=request.user, business=self.business)
        return Response(BankTransactionSerializer(tx).data)


class ReverseSettlementView(BankingAPIView):
    def post(self, request, settlement_id: int):
        if not self.business:
            return _deny("No active workspace.")
        try:
            command = ReverseSettlementCommand.model_validate(request.data or {})
        except PydanticValidationError as exc:
            return _invalid_payload(exc)

        reversal = self.get_service().reverse_settlement(
            settlement_id,
            actor=request.user,
            business=self.business,
            note=command.note,
        )
        return Response(SettlementSerializer(reversal).data, status=status.HTTP_201_CREATED)
