from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.utils import timezone

audit_logger = logging.getLogger("banking.audit")


class ReconciliationEvent:
    IMPORT_COMPLETED = "import.completed"
    IMPORT_CANCELLED = "import.cancelled"
    IMPORT_FAILED = "import.failed"
    SETTLEMENT_APPLIED = "settlement.applied"
    SETTLEMENT_REVERSED = "settlement.reversed"
    SETTLEMENT_REJECTED = "settlement.rejected"
    AUTO_MATCH_COMPLETED = "auto_match.completed"
    AUTO_MATCH_DEFERRED = "auto_match.deferred"
    SUGGESTIONS_REJECTED = "suggestions.rejected"


def log_reconciliation_event(
    event_type: str,
    business_id: Optional[int],
    details: Dict[str, Any],
    actor: str = "system",
    level: int = logging.INFO,
) -> None:
    """Log one reconciliation event for the audit trail."""
    audit_logger.log(
        level,
        "Reconciliation event: %s",
        event_type,
        extra={
            "reconciliation": {
                "event": event_type,
                "business_id": business_id,
                "actor": actor,
                "details": details,
                "timestamp": timezone.now().isoformat(),
            }
        },
    )
