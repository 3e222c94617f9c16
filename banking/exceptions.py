from __future__ import annotations

from rest_framework import status


class ReconciliationError(Exception):
    """Base class for typed bank reconciliation failures."""

    code = "reconciliation_error"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Reconciliation failed."

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def as_dict(self) -> dict:
        payload = {"detail": self.message, "code": self.code}
        if self.context:
            payload["context"] = {k: str(v) for k, v in self.context.items()}
        return payload


class InvalidRow(ReconciliationError):
    code = "invalid_row"
    default_message = "Row could not be canonicalized."

    def __init__(self, reason: str, *, row_index: int | None = None, field: str | None = None):
        self.reason = reason
        self.row_index = row_index
        self.field = field
        super().__init__(reason, row_index=row_index, field=field)

    def as_row_error(self) -> dict:
        return {"row": self.row_index, "field": self.field, "error": self.reason}


class AlreadySettled(ReconciliationError):
    code = "already_settled"
    http_status = status.HTTP_409_CONFLICT
    default_message = "Transaction is already fully settled."


class InsufficientObligationBalance(ReconciliationError):
    code = "insufficient_obligation_balance"
    http_status = status.HTTP_409_CONFLICT
    default_message = "Amount exceeds the obligation's remaining balance."


class CrossCurrencyNotAllowed(ReconciliationError):
    code = "cross_currency_not_allowed"
    default_message = "Transaction and obligation currencies differ."


class InvalidSettlementAmount(ReconciliationError):
    code = "invalid_settlement_amount"
    default_message = "Settlement amount must be positive and within the unsettled amount."


class ObligationSourceUnavailable(ReconciliationError):
    code = "obligation_source_unavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Outstanding obligations could not be fetched from the ledger."


class TransactionNotFound(ReconciliationError):
    code = "transaction_not_found"
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "Bank transaction not found."


class ObligationNotFound(ReconciliationError):
    code = "obligation_not_found"
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "Obligation not found."


class SettlementNotFound(ReconciliationError):
    code = "settlement_not_found"
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "Settlement not found."


class SettlementAlreadyReversed(ReconciliationError):
    code = "settlement_already_reversed"
    http_status = status.HTTP_409_CONFLICT
    default_message = "Settlement has already been reversed."


class ImportCancelled(Exception):
    """Raised by a cancel check to stop an import between rows."""


class DirectionMismatch(ReconciliationError):
    code = "direction_mismatch"
    default_message = "Inflows settle receivables and outflows settle payables."
