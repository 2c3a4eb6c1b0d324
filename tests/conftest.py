import os
import sys

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from esim_pricing.config.settings import Settings
from esim_pricing.data.catalog import Agent, AgentDirectory, Plan, PlanCatalog
from esim_pricing.engine.models import AgentPricingOverride, MarkupType, PricingRule, RuleType
from esim_pricing.engine.override_store import InMemoryOverrideStore
from esim_pricing.engine.pricing_engine import PricingEngine
from esim_pricing.engine.rule_store import InMemoryRuleRepository

PLAN_JP = "11111111-2222-3333-4444-555555555555"
PLAN_TH = "66666666-7777-8888-9999-000000000000"


def make_rule(rule_id, rule_type, markup_type, markup_value, **kwargs):
    """Shorthand for building rules in tests."""
    return PricingRule(
        rule_id=rule_id,
        rule_type=RuleType(rule_type),
        markup_type=MarkupType(markup_type),
        markup_value=markup_value,
        **kwargs,
    )


@pytest.fixture
def settings(tmp_path):
    data_dir = tmp_path / 'data'
    return Settings(
        project_root=tmp_path,
        data_dir=data_dir,
        rules_csv=data_dir / 'pricing_rules.csv',
        overrides_csv=data_dir / 'agent_pricing.csv',
        plans_csv=data_dir / 'plans.csv',
        agents_csv=data_dir / 'agents.csv',
    )


@pytest.fixture
def catalog():
    return PlanCatalog([
        Plan(plan_id=PLAN_JP, wholesale_price=10.0, supplier_plan_id="JP-5GB", country_code="JP"),
        Plan(plan_id=PLAN_TH, wholesale_price=20.0, supplier_plan_id="TH-3GB", country_code="TH"),
    ])


@pytest.fixture
def agents():
    return AgentDirectory([
        Agent(agent_id="A1", user_id="user-1", partner_type="travel_agent"),
        Agent(agent_id="P1", user_id="user-2", partner_type="api_partner"),
    ])


@pytest.fixture
def make_engine(catalog, agents, settings):
    """Build an engine over in-memory rules and overrides."""
    def _make(rules=(), overrides=()):
        repo = InMemoryRuleRepository(rules)
        store = InMemoryOverrideStore(
            AgentPricingOverride(agent_id=a, plan_id=p, retail_price=v) for a, p, v in overrides
        )
        return PricingEngine(repo, store, catalog, agents, settings)
    return _make
