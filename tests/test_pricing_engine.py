"""
Tests for markup application and the override -> rule -> partner -> default chain.
"""
import math

import pytest

from conftest import PLAN_JP, PLAN_TH, make_rule

from esim_pricing.engine.models import PriceSource, PricingContext
from esim_pricing.engine.override_store import InMemoryOverrideStore
from esim_pricing.engine.pricing_engine import PricingEngine, apply_markup, resolve_price
from esim_pricing.engine.rule_store import RuleRepository


class TestApplyMarkup:

    def test_percent(self):
        rule = make_rule("R", "default", "percent", 50)
        assert apply_markup(100, rule) == 150

    def test_fixed(self):
        rule = make_rule("R", "default", "fixed", 20)
        assert apply_markup(100, rule) == 120

    def test_fixed_price_ignores_wholesale(self):
        rule = make_rule("R", "default", "fixed_price", 75)
        assert apply_markup(100, rule) == 75
        assert apply_markup(1000, rule) == 75

    def test_no_rule_uses_default_multiplier(self):
        assert apply_markup(100, None) == 400

    def test_negative_results_are_clamped(self):
        rule = make_rule("R", "default", "fixed", -50)
        assert apply_markup(10, rule) == 0.0

    def test_no_rounding(self):
        rule = make_rule("R", "default", "percent", 33)
        assert apply_markup(9.99, rule) == pytest.approx(9.99 * 1.33)


def test_default_fallback_with_no_rules(make_engine):
    engine = make_engine()
    assert engine.calculate_price(100) == 400


def test_end_to_end_default_rule(make_engine):
    engine = make_engine(rules=[make_rule("D", "default", "percent", 300, priority=99)])
    assert engine.calculate_price(10, agent_id="A1") == 40


def test_end_to_end_country_rule(make_engine):
    engine = make_engine(rules=[
        make_rule("JP", "country", "fixed", 5, target_id="JP", priority=1),
        make_rule("D", "default", "percent", 300, priority=99),
    ])
    assert engine.calculate_price(10, country_code="JP") == 15


def test_priority_wins_over_specificity(make_engine):
    engine = make_engine(rules=[
        make_rule("A", "country", "fixed", 1, target_id="JP", priority=1),
        make_rule("B", "plan", "fixed", 2, target_id=PLAN_JP, priority=2),
    ])
    result = engine.explain_price(PricingContext(wholesale_price=10, country_code="JP", plan_id=PLAN_JP))
    assert result.rule_id == "A", f"Expected lower priority number to win, got {result.rule_id}"
    assert result.retail_price == 11


def test_specificity_breaks_priority_ties(make_engine):
    engine = make_engine(rules=[
        make_rule("A", "country", "fixed", 1, target_id="JP", priority=1),
        make_rule("B", "plan", "fixed", 2, target_id=PLAN_JP, priority=1),
    ])
    result = engine.explain_price(PricingContext(wholesale_price=10, country_code="JP", plan_id=PLAN_JP))
    assert result.rule_id == "B"
    assert result.retail_price == 12


def test_override_beats_agent_filtered_plan_rule(make_engine):
    engine = make_engine(
        rules=[make_rule("PA", "plan", "fixed_price", 99, target_id=PLAN_JP, agent_filter="A1", priority=1)],
        overrides=[("A1", PLAN_JP, 42.5)],
    )
    result = engine.explain_price(PricingContext(wholesale_price=10, agent_id="A1", plan_id=PLAN_JP))
    assert result.source == PriceSource.OVERRIDE
    assert result.retail_price == 42.5
    assert result.rule_id is None


def test_override_needs_both_agent_and_plan(make_engine):
    engine = make_engine(overrides=[("A1", PLAN_JP, 42.5)])
    assert engine.calculate_price(10, plan_id=PLAN_JP) == 40
    assert engine.calculate_price(10, agent_id="A1") == 40


def test_unmatched_rules_fall_to_default(make_engine):
    engine = make_engine(rules=[make_rule("C", "country", "fixed", 5, target_id="TH")])
    result = engine.explain_price(PricingContext(wholesale_price=10, country_code="JP"))
    assert result.source == PriceSource.DEFAULT
    assert result.retail_price == 40


def test_calculate_price_skips_partner_tier(make_engine):
    engine = make_engine()
    # P1 is an api_partner, but the single-price path never looks that up
    assert engine.calculate_price(10, agent_id="P1", plan_id=PLAN_JP) == 40


@pytest.mark.parametrize("wholesale", [0, 0.01, 1, 10.5, 1e9])
@pytest.mark.parametrize("ctx_kwargs", [
    {},
    {"agent_id": "A1"},
    {"country_code": "jp"},
    {"agent_id": "A1", "country_code": "JP", "plan_id": PLAN_JP, "supplier_plan_id": "JP-5GB"},
])
def test_totality(make_engine, wholesale, ctx_kwargs):
    engine = make_engine(rules=[
        make_rule("NEG", "agent", "fixed", -1000, target_id="A1", priority=5),
        make_rule("JP", "country", "percent", -150, target_id="JP", priority=10),
        make_rule("P", "plan", "fixed_price", 12, target_id=PLAN_JP, priority=20),
    ])
    price = engine.calculate_price(wholesale, **ctx_kwargs)
    assert isinstance(price, float)
    assert math.isfinite(price) and price >= 0, f"Price {price} is not a finite non-negative number"


class TestBatchPrices:

    def test_partner_multiplier_when_no_rule_matches(self, make_engine):
        engine = make_engine()
        prices = engine.batch_prices("P1", [PLAN_JP])
        assert prices[PLAN_JP] == pytest.approx(13.0)

    def test_partner_tier_is_below_rules(self, make_engine):
        engine = make_engine(rules=[make_rule("JP", "country", "fixed", 5, target_id="JP")])
        prices = engine.batch_prices("P1", [PLAN_JP, PLAN_TH])
        assert prices[PLAN_JP] == 15
        assert prices[PLAN_TH] == pytest.approx(26.0)

    def test_regular_agent_gets_default(self, make_engine):
        engine = make_engine()
        assert engine.batch_prices("A1", [PLAN_TH]) == {PLAN_TH: 80}

    def test_unknown_plans_are_omitted(self, make_engine):
        engine = make_engine()
        prices = engine.batch_prices("A1", [PLAN_JP, "not-a-plan"])
        assert set(prices) == {PLAN_JP}

    def test_override_returned_even_without_catalog_entry(self, make_engine):
        engine = make_engine(overrides=[("A1", "retired-plan", 19.0)])
        assert engine.batch_prices("A1", ["retired-plan"]) == {"retired-plan": 19.0}

    def test_batch_uses_catalog_country_and_supplier_ids(self, make_engine):
        engine = make_engine(rules=[
            make_rule("S", "plan", "fixed_price", 7, target_id="jp-5gb", priority=10),
            make_rule("JP", "country", "fixed", 1, target_id="JP", priority=20),
        ])
        assert engine.batch_prices("A1", [PLAN_JP]) == {PLAN_JP: 7}

    def test_explain_plan_reports_source(self, make_engine):
        engine = make_engine(overrides=[("P1", PLAN_TH, 30.0)])
        assert engine.explain_plan("P1", PLAN_TH).source == PriceSource.OVERRIDE
        assert engine.explain_plan("P1", PLAN_JP).source == PriceSource.PARTNER
        assert engine.explain_plan("P1", "missing") is None


class _FailingRepository(RuleRepository):
    def _fetch_all(self):
        raise OSError("rule store unreachable")


def test_unreachable_rule_store_degrades_to_default(catalog, agents, settings):
    repo = _FailingRepository()
    repo.refresh()
    engine = PricingEngine(repo, InMemoryOverrideStore(), catalog, agents, settings)

    assert repo.loaded is False
    assert engine.calculate_price(100, country_code="JP") == 400


def test_trace_records_each_tier():
    rules = [make_rule("JP", "country", "percent", 50, target_id="JP")]
    result = resolve_price(rules, InMemoryOverrideStore(),
                           PricingContext(wholesale_price=10, agent_id="A1", country_code="JP", plan_id=PLAN_JP))
    steps = [t.step for t in result.trace]
    assert steps == ["Context", "Override", "Rule Applied"]
    assert "JP" in result.get_trace_text()
