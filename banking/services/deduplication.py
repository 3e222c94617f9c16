from __future__ import annotations

import hashlib
from enum import Enum
from typing import Optional, Tuple

from django.db import IntegrityError, transaction

from banking.models import BankAccount, BankTransaction, ImportBatch
from banking.services.canonicalizer import CanonicalTransaction


class RowOutcome(str, Enum):
    IMPORTED = "IMPORTED"
    DUPLICATE = "DUPLICATE"
    ERROR = "ERROR"


def compute_fingerprint(bank_account_id: int, canonical: CanonicalTransaction) -> str:
    """
    Stable identity of a statement row within one account.

    A bank-provided external id wins over the derived tuple, so two genuinely
    different rows with identical date/amount/text stay distinct when the bank
    numbers them.
    """
    if canonical.external_id:
        raw = f"{bank_account_id}|ext|{canonical.external_id}"
    else:
        raw = "|".join(
            [
                str(bank_account_id),
                canonical.posted_date.isoformat(),
                f"{canonical.amount:.2f}",
                canonical.currency,
                canonical.normalized_description,
            ]
        )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def is_known(bank_account: BankAccount, canonical: CanonicalTransaction, fingerprint: str) -> bool:
    qs = BankTransaction.objects.filter(bank_account=bank_account)
    if canonical.external_id and qs.filter(external_id=canonical.external_id).exists():
        return True
    return qs.filter(fingerprint=fingerprint).exists()


def insert_if_absent(
    *,
    bank_account: BankAccount,
    canonical: CanonicalTransaction,
    import_batch: Optional[ImportBatch] = None,
) -> Tuple[RowOutcome, Optional[BankTransaction]]:
    """
    Insert the canonical row unless the account already holds it.

    The exists() probe is only a fast path; the (account, fingerprint) and
    (account, external_id) unique constraints decide races between concurrent
    imports.
    """
    fingerprint = compute_fingerprint(bank_account.id, canonical)
    if is_known(bank_account, canonical, fingerprint):
        return RowOutcome.DUPLICATE, None

    try:
        with transaction.atomic():
            tx = BankTransaction.objects.create(
                business_id=bank_account.business_id,
                bank_account=bank_account,
                import_batch=import_batch,
                posted_date=canonical.posted_date,
                amount=canonical.amount,
                currency=canonical.currency,
                description=canonical.description,
                normalized_description=canonical.normalized_description,
                counterparty_name=canonical.counterparty_name,
                normalized_counterparty=canonical.normalized_counterparty,
                reference=canonical.reference,
                normalized_reference=canonical.normalized_reference,
                external_id=canonical.external_id,
                fingerprint=fingerprint,
            )
    except IntegrityError:
        return RowOutcome.DUPLICATE, None
    return RowOutcome.IMPORTED, tx
