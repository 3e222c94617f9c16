"""
Tests for the scoring and ranking rules of the matcher.

Everything here is pure: transactions and obligations are plain dataclasses.
"""

from datetime import date, timedelta
from decimal import Decimal

from django.test import SimpleTestCase, override_settings

from banking.services.ledger import Obligation
from banking.services.matching import (
    MatchingConfig,
    MatchOutcome,
    TransactionFacts,
    amount_score,
    date_score,
    decide,
    rank_candidates,
    score_pair,
    suggestions_for,
)


def _tx(amount="1500.00", *, day=date(2024, 3, 10), currency="EUR", reference="", counterparty="", description=""):
    return TransactionFacts(
        transaction_id=1,
        posted_date=day,
        amount=Decimal(amount),
        currency=currency,
        normalized_description=description,
        normalized_counterparty=counterparty,
        normalized_reference=reference,
    )


def _ob(obligation_id=1, amount="1500.00", *, due=date(2024, 3, 1), currency="EUR", reference="INV-2024-007",
        counterparty="Nordic Solutions AS", obligation_type="RECEIVABLE"):
    return Obligation(
        obligation_type=obligation_type,
        obligation_id=obligation_id,
        business_id=1,
        counterparty_name=counterparty,
        currency=currency,
        amount_due=Decimal(amount),
        due_date=due,
        reference=reference,
    )


class ComponentScoreTests(SimpleTestCase):
    def setUp(self):
        self.config = MatchingConfig()

    def test_weights_sum_to_one(self):
        total = (
            MatchingConfig.WEIGHT_AMOUNT
            + MatchingConfig.WEIGHT_REFERENCE
            + MatchingConfig.WEIGHT_COUNTERPARTY
            + MatchingConfig.WEIGHT_DATE
        )
        self.assertAlmostEqual(total, 1.0)

    def test_amount_exact_within_epsilon(self):
        self.assertEqual(amount_score(Decimal("1500.00"), Decimal("1500.00"), self.config), 1.0)
        self.assertEqual(amount_score(Decimal("1500.01"), Decimal("1500.00"), self.config), 1.0)
        self.assertEqual(amount_score(Decimal("-1500.00"), Decimal("1500.00"), self.config), 1.0)

    def test_amount_partial_credit_decays_inside_band(self):
        # 5% of 1000 = 50 band; 20 off -> 0.8 * (1 - 20/50)
        self.assertAlmostEqual(amount_score(Decimal("1020.00"), Decimal("1000.00"), self.config), 0.48)
        near = amount_score(Decimal("1005.00"), Decimal("1000.00"), self.config)
        far = amount_score(Decimal("1040.00"), Decimal("1000.00"), self.config)
        self.assertGreater(near, far)
        self.assertLess(near, 1.0)
        self.assertEqual(amount_score(Decimal("1050.00"), Decimal("1000.00"), self.config), 0.0)
        self.assertEqual(amount_score(Decimal("400.00"), Decimal("1000.00"), self.config), 0.0)

    def test_date_linear_decay(self):
        due = date(2024, 3, 1)
        self.assertEqual(date_score(due, due, 45), 1.0)
        self.assertAlmostEqual(date_score(due + timedelta(days=9), due, 45), 0.8)
        self.assertEqual(date_score(due - timedelta(days=45), due, 45), 0.0)
        self.assertEqual(date_score(due, None, 45), 0.0)

    def test_reference_is_binary(self):
        tx = _tx(reference="inv2024007")
        self.assertEqual(score_pair(tx, _ob(), self.config).components["reference"], 1.0)
        other = _tx(reference="inv2024008")
        self.assertEqual(score_pair(other, _ob(), self.config).components["reference"], 0.0)

    def test_reference_found_in_description(self):
        tx = _tx(description="payment for inv 2024 007 thanks")
        self.assertEqual(score_pair(tx, _ob(), self.config).components["reference"], 1.0)

    def test_short_references_are_ignored(self):
        tx = _tx(reference="12345")
        self.assertEqual(score_pair(tx, _ob(reference="12"), self.config).components["reference"], 0.0)

    def test_counterparty_similarity(self):
        same = score_pair(_tx(counterparty="nordic solutions as"), _ob(counterparty="NORDIC SOLUTIONS A/S"), self.config)
        self.assertEqual(same.components["counterparty"], 1.0)
        partial = score_pair(_tx(counterparty="nordic solutions"), _ob(counterparty="Nordic Logistics AS"), self.config)
        self.assertGreater(partial.components["counterparty"], 0.0)
        self.assertLess(partial.components["counterparty"], 1.0)
        unrelated = score_pair(_tx(counterparty="baltic commerce"), _ob(), self.config)
        self.assertLess(unrelated.components["counterparty"], 0.5)

    def test_counterparty_from_description_when_name_missing(self):
        tx = _tx(description="sepa credit nordic solutions as inv2024007")
        self.assertEqual(score_pair(tx, _ob(), self.config).components["counterparty"], 1.0)


class ClassificationTests(SimpleTestCase):
    def setUp(self):
        self.config = MatchingConfig()

    def test_exact_match_is_auto(self):
        tx = _tx(reference="inv2024007", counterparty="nordic solutions as")
        suggestion = score_pair(tx, _ob(), self.config)
        self.assertGreaterEqual(suggestion.confidence, 0.95)
        self.assertTrue(suggestion.amount_exact)
        self.assertEqual(suggestion.outcome, MatchOutcome.AUTO)
        self.assertEqual(set(suggestion.contributions), {"amount", "reference", "counterparty", "date"})

    def test_high_score_without_exact_amount_is_only_suggested(self):
        tx = _tx(amount="1510.00", reference="inv2024007", counterparty="nordic solutions as")
        suggestion = score_pair(tx, _ob(), self.config)
        self.assertFalse(suggestion.amount_exact)
        self.assertEqual(suggestion.outcome, MatchOutcome.SUGGEST)

    def test_below_floor_is_none(self):
        tx = _tx(amount="99.00", counterparty="someone else")
        self.assertEqual(score_pair(tx, _ob(), self.config).outcome, MatchOutcome.NONE)

    def test_cross_currency_never_auto(self):
        tx = _tx(currency="USD", reference="inv2024007", counterparty="nordic solutions as")
        suggestion = score_pair(tx, _ob(currency="EUR"), self.config)
        self.assertTrue(suggestion.cross_currency)
        self.assertEqual(suggestion.outcome, MatchOutcome.SUGGEST)
        self.assertLessEqual(suggestion.confidence, self.config.suggestion_floor)

    def test_reference_match_never_scores_lower(self):
        for currency in ("EUR", "USD"):
            for amount in ("1500.00", "1530.00", "10.00"):
                with self.subTest(currency=currency, amount=amount):
                    tx = _tx(amount=amount, currency=currency, reference="inv2024007", counterparty="nordic")
                    with_ref = score_pair(tx, _ob(reference="INV-2024-007"), self.config)
                    without_ref = score_pair(tx, _ob(reference="INV-1999-001"), self.config)
                    self.assertGreaterEqual(with_ref.confidence, without_ref.confidence)

    @override_settings(BANK_RECONCILIATION={"AUTO_MATCH_THRESHOLD": "0.99", "DATE_WINDOW_DAYS": 10})
    def test_config_from_settings(self):
        config = MatchingConfig.from_settings()
        self.assertEqual(config.auto_match_threshold, 0.99)
        self.assertEqual(config.date_window_days, 10)
        self.assertEqual(config.suggestion_floor, 0.5)
        self.assertEqual(config.amount_epsilon, Decimal("0.01"))


class RankingTests(SimpleTestCase):
    def setUp(self):
        self.config = MatchingConfig()

    def test_direction_and_window_filter(self):
        tx = _tx(reference="inv2024007")
        obligations = [
            _ob(1),
            _ob(2, obligation_type="PAYABLE"),
            _ob(3, due=date(2024, 3, 10) + timedelta(days=46)),
        ]
        ranked = rank_candidates(tx, obligations, self.config)
        self.assertEqual([s.obligation_id for s in ranked], [1])

        outflow = _tx(amount="-1500.00")
        ranked = rank_candidates(outflow, obligations, self.config)
        self.assertEqual([s.obligation_id for s in ranked], [2])

    def test_tie_break_earliest_due_then_larger_balance(self):
        tx = _tx(amount="250.00", day=date(2024, 4, 15), counterparty="baltic commerce")
        later = _ob(1, "250.00", due=date(2024, 4, 20), reference="B-1", counterparty="Baltic Commerce")
        earlier = _ob(2, "250.00", due=date(2024, 4, 10), reference="B-2", counterparty="Baltic Commerce")
        ranked = rank_candidates(tx, [later, earlier], self.config)
        self.assertEqual(ranked[0].confidence, ranked[1].confidence)
        self.assertEqual(ranked[0].obligation_id, 2)

        small = _ob(3, "300.00", due=date(2024, 4, 10), reference="X-3", counterparty="Baltic Commerce")
        large = _ob(4, "400.00", due=date(2024, 4, 10), reference="X-4", counterparty="Baltic Commerce")
        ranked = rank_candidates(_tx(amount="5.00", day=date(2024, 4, 10), counterparty="baltic commerce"),
                                 [small, large], self.config)
        self.assertEqual([s.obligation_id for s in ranked], [4, 3])

    def test_suggestions_drop_below_floor_and_limit(self):
        tx = _tx(amount="250.00", day=date(2024, 4, 15), counterparty="baltic commerce")
        obligations = [
            _ob(i, "250.00", due=date(2024, 4, 1) + timedelta(days=i), reference=f"B-{i}", counterparty="Baltic Commerce")
            for i in range(1, 9)
        ]
        obligations.append(_ob(99, "9999.00", due=date(2024, 4, 15), reference="Z-99", counterparty="Other Ltd"))
        suggestions = suggestions_for(tx, obligations, self.config)
        self.assertEqual(len(suggestions), self.config.max_suggestions)
        self.assertNotIn(99, [s.obligation_id for s in suggestions])
        confidences = [s.confidence for s in suggestions]
        self.assertEqual(confidences, sorted(confidences, reverse=True))


class DecideTests(SimpleTestCase):
    def setUp(self):
        self.config = MatchingConfig()

    def test_unique_auto_winner(self):
        tx = _tx(reference="inv2024007", counterparty="nordic solutions as")
        decision = decide(rank_candidates(tx, [_ob(1), _ob(2, reference="INV-2024-099")], self.config), self.config)
        self.assertEqual(decision.outcome, MatchOutcome.AUTO)
        self.assertEqual(decision.best.obligation_id, 1)
        self.assertFalse(decision.ambiguous)

    def test_two_auto_eligible_candidates_defer(self):
        tx = _tx(reference="inv10011", counterparty="nordic solutions as")
        obligations = [_ob(1, reference="INV-1001"), _ob(2, reference="INV-10011")]
        decision = decide(rank_candidates(tx, obligations, self.config), self.config)
        self.assertEqual(decision.outcome, MatchOutcome.SUGGEST)
        self.assertTrue(decision.ambiguous)

    def test_tie_margin(self):
        config = MatchingConfig(tie_margin=0.2)
        tx = _tx(reference="inv2024007", counterparty="nordic solutions as")
        runner_up = _ob(2, reference="INV-OTHER-1")
        decision = decide(rank_candidates(tx, [_ob(1), runner_up], config), config)
        # Runner-up scores 0.68 vs 0.98: outside a 0.2 margin.
        self.assertEqual(decision.outcome, MatchOutcome.AUTO)
        config = MatchingConfig(tie_margin=0.35)
        decision = decide(rank_candidates(tx, [_ob(1), runner_up], config), config)
        self.assertEqual(decision.outcome, MatchOutcome.SUGGEST)

    def test_nothing_surfaced(self):
        decision = decide([], self.config)
        self.assertEqual(decision.outcome, MatchOutcome.NONE)
        self.assertIsNone(decision.best)
