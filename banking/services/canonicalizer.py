"""
Statement row canonicalization.

Turns one externally parsed statement row into a ``CanonicalTransaction`` with
normalized counterparty, reference and description text. Parsing problems are
reported as ``InvalidRow`` so the caller can record them per row and continue.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from banking.exceptions import InvalidRow


CENT = Decimal("0.01")
# BankTransaction.amount is max_digits=19, decimal_places=2.
MAX_INTEGER_DIGITS = 17
MAX_AMOUNT = Decimal(10) ** MAX_INTEGER_DIGITS

DATE_FORMATS = (
    "%Y-%m-%d",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%Y%m%d",
)

# Normalized (casefolded, accent-stripped) legal-form tokens, mapped to a canonical form.
LEGAL_SUFFIXES = {
    "as": "as",
    "asa": "as",
    "ou": "ou",
    "llc": "llc",
    "ltd": "ltd",
    "limited": "ltd",
    "inc": "inc",
    "incorporated": "inc",
    "gmbh": "gmbh",
    "ag": "ag",
    "ab": "ab",
    "oy": "oy",
    "oyj": "oy",
    "sia": "sia",
    "uab": "uab",
    "bv": "bv",
    "nv": "nv",
    "sa": "sa",
    "srl": "srl",
    "plc": "plc",
    "corp": "corp",
    "corporation": "corp",
    "co": "co",
}

_REFERENCE_TOKEN = re.compile(
    r"\b(?:invoice|inv|bill|ref|arve)[\s#:.-]*(?=[a-z0-9/-]*\d)[a-z0-9/-]+",
    re.IGNORECASE,
)
_DESCRIPTION_SPLIT = re.compile(r"\s(?:-|/|\||:)\s|\s{2,}")
_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")
_CURRENCY_AFFIX = re.compile(r"^[A-Za-z]{3}(?![A-Za-z])|(?<![A-Za-z])[A-Za-z]{3}$")


class RawStatementRow(BaseModel):
    """One row as produced by an external statement parser."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)

    posted_on: Union[date, datetime, str] = Field(alias="date")
    amount: Union[Decimal, str]
    description: str = ""
    currency: Optional[str] = None
    reference: Optional[str] = None
    counterparty: Optional[str] = None
    external_id: Optional[str] = None


@dataclass(frozen=True)
class CanonicalTransaction:
    row_index: int
    posted_date: date
    amount: Decimal
    currency: str
    description: str
    normalized_description: str
    counterparty_name: str
    normalized_counterparty: str
    reference: str
    normalized_reference: str
    external_id: str

    @property
    def is_inflow(self) -> bool:
        return self.amount > 0


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def normalize_text(value: str) -> str:
    """Casefold, strip accents and punctuation, collapse whitespace."""
    folded = _fold(value)
    cleaned = re.sub(r"[^a-z0-9]+", " ", folded)
    return " ".join(cleaned.split())


def normalize_reference(value: str) -> str:
    """``"INV-2024/007"`` -> ``"inv2024007"``."""
    return re.sub(r"[^a-z0-9]", "", _fold(value))


def normalize_counterparty(value: str) -> str:
    """
    Normalize a company or person name for comparison.

    Legal-form suffixes are collapsed to one canonical token so that
    "Nordic Solutions A/S" and "NORDIC SOLUTIONS AS" compare equal.
    """
    text = _fold(value)
    text = re.sub(r"\b([a-z])[./]([a-z])\b\.?", r"\1\2", text)
    tokens = re.sub(r"[^a-z0-9]+", " ", text).split()
    normalized = [LEGAL_SUFFIXES.get(token, token) if i == len(tokens) - 1 else token for i, token in enumerate(tokens)]
    return " ".join(normalized)


def name_tokens(normalized_name: str) -> set[str]:
    """Distinctive tokens of a normalized name (legal suffixes removed)."""
    tokens = set(normalized_name.split())
    distinctive = tokens - set(LEGAL_SUFFIXES.values())
    return distinctive or tokens


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value or "").strip()
    if not raw:
        raise ValueError("date is empty")
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValueError(f"unrecognised date {raw!r}") from None


def parse_amount(value: Any) -> Decimal:
    """
    Parse a statement amount.

    Accepts currency symbols or a three-letter code, either thousands convention (``1.234,56`` or
    ``1,234.56``), a trailing or leading minus and accounting parentheses.
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        text = _CURRENCY_AFFIX.sub("", str(value or "").strip())
        if re.search(r"[A-Za-z]", text):
            raise ValueError(f"unrecognised amount {value!r}")
        # Drops currency symbols, spaces and apostrophe separators.
        raw = re.sub(r"[^0-9,.()+\-]", "", text)
        negative = False
        if raw.startswith("(") and raw.endswith(")"):
            negative, raw = True, raw[1:-1]
        if raw.endswith("-"):
            negative, raw = True, raw[:-1]
        if raw.startswith("-"):
            negative, raw = not negative, raw[1:]
        elif raw.startswith("+"):
            raw = raw[1:]

        if "," in raw and "." in raw:
            if raw.rfind(",") > raw.rfind("."):
                raw = raw.replace(".", "").replace(",", ".")
            else:
                raw = raw.replace(",", "")
        elif "," in raw:
            if raw.count(",") > 1 or len(raw.rpartition(",")[2]) == 3:
                raw = raw.replace(",", "")
            else:
                raw = raw.replace(",", ".")
        elif raw.count(".") > 1:
            raw = raw.replace(".", "")
        if not raw:
            raise ValueError("amount is empty")
        try:
            amount = Decimal(raw)
        except InvalidOperation:
            raise ValueError(f"unrecognised amount {value!r}") from None
        if negative:
            amount = -amount

    if not amount.is_finite():
        raise ValueError(f"unrecognised amount {value!r}")
    if abs(amount) >= MAX_AMOUNT:
        raise ValueError(f"amount {value!r} has more than {MAX_INTEGER_DIGITS} integer digits")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"unrecognised amount {value!r}") from None


def extract_reference(description: str) -> str:
    match = _REFERENCE_TOKEN.search(description or "")
    return match.group(0) if match else ""


def extract_counterparty(description: str) -> str:
    """Best-effort payer/payee: the leading chunk of the description before a separator or reference."""
    text = (description or "").strip()
    if not text:
        return ""
    ref = _REFERENCE_TOKEN.search(text)
    if ref:
        text = text[: ref.start()]
    head = _DESCRIPTION_SPLIT.split(text, maxsplit=1)[0]
    return head.strip(" ,;-/")


def canonicalize(row: Union[RawStatementRow, Mapping[str, Any]], *, row_index: int, default_currency: str) -> CanonicalTransaction:
    if not isinstance(row, RawStatementRow):
        try:
            row = RawStatementRow.model_validate(dict(row))
        except (TypeError, ValueError, ValidationError) as exc:
            raise InvalidRow(f"malformed row: {exc}", row_index=row_index) from exc

    try:
        posted_date = parse_date(row.posted_on)
    except ValueError as exc:
        raise InvalidRow(str(exc), row_index=row_index, field="date") from exc

    try:
        amount = parse_amount(row.amount)
    except ValueError as exc:
        raise InvalidRow(str(exc), row_index=row_index, field="amount") from exc
    if amount == 0:
        raise InvalidRow("amount is zero", row_index=row_index, field="amount")

    currency = (row.currency or default_currency or "").upper()
    if not _CURRENCY_CODE.match(currency):
        raise InvalidRow(f"invalid currency {currency!r}", row_index=row_index, field="currency")

    description = " ".join(row.description.split())
    reference = row.reference or extract_reference(description)
    counterparty = row.counterparty or extract_counterparty(description)

    return CanonicalTransaction(
        row_index=row_index,
        posted_date=posted_date,
        amount=amount,
        currency=currency,
        description=description[:512],
        normalized_description=normalize_text(description)[:512],
        counterparty_name=counterparty[:255],
        normalized_counterparty=normalize_counterparty(counterparty)[:255],
        reference=reference[:255],
        normalized_reference=normalize_reference(reference)[:255],
        external_id=(row.external_id or "")[:255],
    )
