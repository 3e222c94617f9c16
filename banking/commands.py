"""Request payloads for the banking API, validated with pydantic."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class ImportBatchCommand(BaseModel):
    model_config = {"extra": "forbid"}

    # Rows are validated one by one during import so a bad row never fails the batch.
    rows: list[dict[str, Any]] = Field(default_factory=list)
    source_checksum: Optional[str] = Field(default=None, max_length=64)
    auto_match: bool = False


class ApplyMatchCommand(BaseModel):
    model_config = {"extra": "forbid"}

    obligation_type: Literal["RECEIVABLE", "PAYABLE"]
    obligation_id: int = Field(gt=0)
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=19, decimal_places=2)
    allow_cross_currency: bool = False
    note: str = Field(default="", max_length=255)


class ReverseSettlementCommand(BaseModel):
    model_config = {"extra": "forbid"}

    note: str = Field(default="", max_length=255)
