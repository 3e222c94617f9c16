"""
Bank transaction to obligation matching.

Scores each (transaction, obligation) pair as a weighted sum of four
components, each in [0, 1]:

- amount (0.40): 1.0 within AMOUNT_EPSILON, decaying to 0 at the tolerance band edge
- reference (0.30): 1.0 when the obligation reference appears in the transaction
- counterparty (0.20): token-set / edit-distance similarity of normalized names
- date (0.10): 1.0 on the due date, 0 at the edge of the search window

Classification:
- AUTO: confidence >= AUTO_MATCH_THRESHOLD and the amount is exact, same currency
- SUGGEST: confidence >= SUGGESTION_FLOOR
- NONE: below the floor

Scoring is pure: nothing here reads or writes the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from difflib import SequenceMatcher
from enum import Enum
from typing import Dict, List, Optional, Sequence

from django.conf import settings

from banking.models import ObligationType
from banking.services.canonicalizer import name_tokens, normalize_counterparty, normalize_reference
from banking.services.ledger import DateWindow, Obligation


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True)
class MatchingConfig:
    """
    Tunables for the matcher. Defaults mirror ``settings.BANK_RECONCILIATION``.

    - DATE_WINDOW_DAYS: search window (± days) around the transaction date
    - AMOUNT_EPSILON: difference still treated as an exact amount match
    - AMOUNT_TOLERANCE_RATIO: band (fraction of amount due) earning partial credit
    - AUTO_MATCH_THRESHOLD / SUGGESTION_FLOOR: classification cut-offs
    - TIE_MARGIN: runner-up this close to the best candidate makes the pick ambiguous
    """

    WEIGHT_AMOUNT = 0.40
    WEIGHT_REFERENCE = 0.30
    WEIGHT_COUNTERPARTY = 0.20
    WEIGHT_DATE = 0.10

    # Partial amount credit starts below 1.0 so only exact amounts can score full marks.
    PARTIAL_AMOUNT_CEILING = 0.8
    MIN_REFERENCE_LENGTH = 3

    date_window_days: int = 45
    amount_epsilon: Decimal = Decimal("0.01")
    amount_tolerance_ratio: Decimal = Decimal("0.05")
    auto_match_threshold: float = 0.85
    suggestion_floor: float = 0.50
    tie_margin: float = 0.0
    max_suggestions: int = 5

    @classmethod
    def from_settings(cls) -> "MatchingConfig":
        conf = getattr(settings, "BANK_RECONCILIATION", {}) or {}
        defaults = cls()
        return cls(
            date_window_days=int(conf.get("DATE_WINDOW_DAYS", defaults.date_window_days)),
            amount_epsilon=Decimal(str(conf.get("AMOUNT_EPSILON", defaults.amount_epsilon))),
            amount_tolerance_ratio=Decimal(str(conf.get("AMOUNT_TOLERANCE_RATIO", defaults.amount_tolerance_ratio))),
            auto_match_threshold=float(conf.get("AUTO_MATCH_THRESHOLD", defaults.auto_match_threshold)),
            suggestion_floor=float(conf.get("SUGGESTION_FLOOR", defaults.suggestion_floor)),
            tie_margin=float(conf.get("TIE_MARGIN", defaults.tie_margin)),
            max_suggestions=int(conf.get("MAX_SUGGESTIONS", defaults.max_suggestions)),
        )

    def window_for(self, posted_date: date) -> DateWindow:
        span = timedelta(days=self.date_window_days)
        return DateWindow(start=posted_date - span, end=posted_date + span)


class MatchOutcome(str, Enum):
    AUTO = "AUTO"
    SUGGEST = "SUGGEST"
    NONE = "NONE"


@dataclass(frozen=True)
class TransactionFacts:
    """The parts of a bank transaction the matcher looks at."""

    transaction_id: Optional[int]
    posted_date: date
    amount: Decimal
    currency: str
    normalized_description: str = ""
    normalized_counterparty: str = ""
    normalized_reference: str = ""
    settled_amount: Decimal = Decimal("0.00")

    @classmethod
    def from_model(cls, tx) -> "TransactionFacts":
        return cls(
            transaction_id=tx.pk,
            posted_date=tx.posted_date,
            amount=tx.amount,
            currency=tx.currency,
            normalized_description=tx.normalized_description,
            normalized_counterparty=tx.normalized_counterparty,
            normalized_reference=tx.normalized_reference,
            settled_amount=tx.settled_amount,
        )

    @property
    def direction(self) -> str:
        return ObligationType.RECEIVABLE if self.amount > 0 else ObligationType.PAYABLE

    @property
    def remaining(self) -> Decimal:
        return abs(self.amount) - self.settled_amount


@dataclass
class MatchSuggestion:
    """Ephemeral scoring result for one (transaction, obligation) pair."""

    transaction_id: Optional[int]
    obligation: Obligation
    confidence: float
    components: Dict[str, float]
    amount_exact: bool
    cross_currency: bool
    outcome: MatchOutcome
    explanation: List[str] = field(default_factory=list)

    @property
    def obligation_type(self) -> str:
        return self.obligation.obligation_type

    @property
    def obligation_id(self) -> int:
        return self.obligation.obligation_id

    @property
    def contributions(self) -> Dict[str, float]:
        weights = {
            "amount": MatchingConfig.WEIGHT_AMOUNT,
            "reference": MatchingConfig.WEIGHT_REFERENCE,
            "counterparty": MatchingConfig.WEIGHT_COUNTERPARTY,
            "date": MatchingConfig.WEIGHT_DATE,
        }
        return {name: round(score * weights[name], 4) for name, score in self.components.items()}

    def sort_key(self):
        # Highest confidence, then oldest due date (FIFO), then the larger balance.
        return (
            -self.confidence,
            self.obligation.due_date or date.max,
            -self.obligation.amount_due,
            self.obligation.obligation_type,
            self.obligation.obligation_id,
        )


# ============================================================================
# COMPONENT SCORES
# ============================================================================

def amount_score(tx_amount: Decimal, amount_due: Decimal, config: MatchingConfig) -> float:
    diff = abs(abs(tx_amount) - amount_due)
    if diff <= config.amount_epsilon:
        return 1.0
    band = max(amount_due * config.amount_tolerance_ratio, config.amount_epsilon)
    if diff >= band:
        return 0.0
    return round(MatchingConfig.PARTIAL_AMOUNT_CEILING * float(1 - diff / band), 4)


def reference_score(tx: TransactionFacts, obligation_reference: str) -> float:
    ref = normalize_reference(obligation_reference)
    if len(ref) < MatchingConfig.MIN_REFERENCE_LENGTH:
        return 0.0
    haystacks = (tx.normalized_reference, tx.normalized_description.replace(" ", ""))
    return 1.0 if any(ref in haystack for haystack in haystacks if haystack) else 0.0


def counterparty_score(tx: TransactionFacts, obligation_counterparty: str) -> float:
    theirs = normalize_counterparty(obligation_counterparty)
    if not theirs:
        return 0.0
    their_tokens = name_tokens(theirs)

    ours = tx.normalized_counterparty
    if ours:
        our_tokens = name_tokens(ours)
        jaccard = len(our_tokens & their_tokens) / len(our_tokens | their_tokens)
        ratio = SequenceMatcher(None, " ".join(sorted(our_tokens)), " ".join(sorted(their_tokens))).ratio()
        return round(max(jaccard, ratio), 4)

    # No extracted name: the share of the obligation's name found in the description.
    description_tokens = set(tx.normalized_description.split())
    if not description_tokens:
        return 0.0
    return round(len(their_tokens & description_tokens) / len(their_tokens), 4)


def date_score(posted_date: date, anchor: Optional[date], window_days: int) -> float:
    if anchor is None or window_days <= 0:
        return 0.0
    days = abs((posted_date - anchor).days)
    return round(max(0.0, 1.0 - days / window_days), 4)


# ============================================================================
# SCORING AND RANKING
# ============================================================================

def score_pair(tx: TransactionFacts, obligation: Obligation, config: MatchingConfig) -> MatchSuggestion:
    """Pure scoring function of (transaction, obligation, configuration)."""
    remaining = tx.remaining
    components = {
        "amount": amount_score(remaining, obligation.amount_due, config),
        "reference": reference_score(tx, obligation.reference),
        "counterparty": counterparty_score(tx, obligation.counterparty_name),
        "date": date_score(tx.posted_date, obligation.anchor_date, config.date_window_days),
    }
    confidence = round(
        components["amount"] * MatchingConfig.WEIGHT_AMOUNT
        + components["reference"] * MatchingConfig.WEIGHT_REFERENCE
        + components["counterparty"] * MatchingConfig.WEIGHT_COUNTERPARTY
        + components["date"] * MatchingConfig.WEIGHT_DATE,
        4,
    )
    amount_exact = components["amount"] == 1.0
    cross_currency = tx.currency.upper() != obligation.currency.upper()

    explanation = []
    if amount_exact:
        explanation.append(f"Amount {remaining} equals amount due")
    elif components["amount"] > 0:
        explanation.append(f"Amount {remaining} close to amount due {obligation.amount_due}")
    if components["reference"]:
        explanation.append(f"Reference {obligation.reference} found")
    if components["counterparty"] >= 0.5:
        explanation.append(f"Counterparty resembles {obligation.counterparty_name}")
    if components["date"] > 0:
        explanation.append(f"Dated within {config.date_window_days} days of {obligation.anchor_date}")

    if cross_currency:
        # Different currencies never auto-match and never rank above the floor.
        confidence = min(confidence, config.suggestion_floor)
        explanation.append(f"Currency differs ({tx.currency} vs {obligation.currency})")

    if not cross_currency and amount_exact and confidence >= config.auto_match_threshold:
        outcome = MatchOutcome.AUTO
    elif confidence >= config.suggestion_floor:
        outcome = MatchOutcome.SUGGEST
    else:
        outcome = MatchOutcome.NONE

    return MatchSuggestion(
        transaction_id=tx.transaction_id,
        obligation=obligation,
        confidence=confidence,
        components=components,
        amount_exact=amount_exact,
        cross_currency=cross_currency,
        outcome=outcome,
        explanation=explanation,
    )


def is_candidate(tx: TransactionFacts, obligation: Obligation, config: MatchingConfig) -> bool:
    if obligation.obligation_type != tx.direction or obligation.amount_due <= 0:
        return False
    anchor = obligation.anchor_date
    return anchor is not None and anchor in config.window_for(tx.posted_date)


def rank_candidates(
    tx: TransactionFacts,
    obligations: Sequence[Obligation],
    config: MatchingConfig,
) -> List[MatchSuggestion]:
    """All candidates scored and ordered best first, below-floor ones included."""
    scored = [score_pair(tx, ob, config) for ob in obligations if is_candidate(tx, ob, config)]
    return sorted(scored, key=MatchSuggestion.sort_key)


def suggestions_for(
    tx: TransactionFacts,
    obligations: Sequence[Obligation],
    config: MatchingConfig,
) -> List[MatchSuggestion]:
    ranked = rank_candidates(tx, obligations, config)
    surfaced = [s for s in ranked if s.outcome != MatchOutcome.NONE]
    return surfaced[: config.max_suggestions]


@dataclass
class MatchDecision:
    outcome: MatchOutcome
    best: Optional[MatchSuggestion]
    ranked: List[MatchSuggestion]
    ambiguous: bool = False


def decide(ranked: Sequence[MatchSuggestion], config: MatchingConfig) -> MatchDecision:
    """
    Classify a ranked list.

    Auto-match needs a unique winner: if the runner-up is also auto-eligible or
    scores within ``tie_margin`` of the best, the pick is left for a person.
    """
    surfaced = [s for s in ranked if s.outcome != MatchOutcome.NONE]
    if not surfaced:
        return MatchDecision(MatchOutcome.NONE, None, list(ranked))

    best = surfaced[0]
    if best.outcome != MatchOutcome.AUTO:
        return MatchDecision(MatchOutcome.SUGGEST, best, list(ranked))

    runner_up = surfaced[1] if len(surfaced) > 1 else None
    ambiguous = runner_up is not None and (
        runner_up.outcome == MatchOutcome.AUTO or runner_up.confidence >= best.confidence - config.tie_margin
    )
    if ambiguous:
        return MatchDecision(MatchOutcome.SUGGEST, best, list(ranked), ambiguous=True)
    return MatchDecision(MatchOutcome.AUTO, best, list(ranked))
