"""
Pricing Engine - Retail price resolution with traceability.

Resolution order:
1. Agent override for the exact (agent, plan) pair
2. Best matching pricing rule (priority, then specificity)
3. Partner-type multiplier (only when the caller supplies partner_type)
4. Default multiplier (4x wholesale, i.e. 300% markup)
"""
import logging
import math
from typing import Iterable, Optional

from ..config.settings import Settings, get_settings
from .models import MarkupType, PriceResult, PriceSource, PricingContext, PricingRule
from .rule_matcher import candidates, select_rule, specificity

logger = logging.getLogger(__name__)

DEFAULT_MULTIPLIER = 4.0


def apply_markup(wholesale_price: float, rule: Optional[PricingRule],
                 default_multiplier: float = DEFAULT_MULTIPLIER) -> float:
    """
    Apply a rule's markup to a wholesale price.

    No rounding; currency formatting belongs to the caller. Results are
    clamped at zero.
    """
    if rule is None:
        price = wholesale_price * default_multiplier
    elif rule.markup_type == MarkupType.FIXED_PRICE:
        price = rule.markup_value
    elif rule.markup_type == MarkupType.PERCENT:
        price = wholesale_price * (1 + rule.markup_value / 100.0)
    elif rule.markup_type == MarkupType.FIXED:
        price = wholesale_price + rule.markup_value
    else:
        price = wholesale_price * default_multiplier

    if not math.isfinite(price):
        return wholesale_price * default_multiplier
    return max(0.0, float(price))


def resolve_price(
    rules: Iterable[PricingRule],
    overrides,
    ctx: PricingContext,
    default_multiplier: float = DEFAULT_MULTIPLIER,
    partner_multipliers: Optional[dict[str, float]] = None,
) -> PriceResult:
    """
    Resolve a retail price for one context.

    `overrides` is anything with get(agent_id, plan_id) returning an
    override record or None; pass None to skip the override tier.
    """
    wholesale = float(ctx.wholesale_price or 0.0)
    result = PriceResult(retail_price=0.0, source=PriceSource.DEFAULT)
    result.add_trace("Context", "Wholesale price", f"{wholesale:.4f}")

    # 1. Override
    if overrides is not None and ctx.agent_id and ctx.plan_id:
        override = overrides.get(ctx.agent_id, ctx.plan_id)
        if override is not None:
            result.retail_price = max(0.0, float(override.retail_price))
            result.source = PriceSource.OVERRIDE
            result.add_trace("Override", f"Agent {ctx.agent_id} fixed price for plan {ctx.plan_id}",
                             f"{result.retail_price:.4f}")
            return result
        result.add_trace("Override", "No agent override for this plan")

    # 2. Rules
    matched = candidates(rules, ctx)
    rule = select_rule(matched, ctx)
    if rule is not None:
        result.retail_price = apply_markup(wholesale, rule, default_multiplier)
        result.source = PriceSource.RULE
        result.rule_id = rule.rule_id
        result.add_trace(
            "Rule Applied",
            f"{rule.rule_id} ({rule.rule_type.value}, priority {rule.priority}, "
            f"specificity {specificity(rule, ctx)}) {rule.markup_type.value} {rule.markup_value:g}",
            f"{result.retail_price:.4f}",
        )
        return result
    result.add_trace("Rules", f"No matching rule among {len(matched)} candidates")

    # 3. Partner type
    partner_type = (ctx.partner_type or '').strip().lower()
    multiplier = (partner_multipliers or {}).get(partner_type) if partner_type else None
    if multiplier is not None:
        result.retail_price = max(0.0, wholesale * multiplier)
        result.source = PriceSource.PARTNER
        result.add_trace("Partner Fallback", f"{partner_type} multiplier {multiplier:g}",
                         f"{result.retail_price:.4f}")
        return result

    # 4. Default
    result.retail_price = apply_markup(wholesale, None, default_multiplier)
    result.add_trace("Default", f"Default multiplier {default_multiplier:g}",
                     f"{result.retail_price:.4f}")
    return result


class PricingEngine:
    """
    Prices plans for agents from the live rule set and override table.

    The engine holds no pricing state of its own: rules come from the rule
    repository (refreshed externally) and overrides from the override store.
    """

    def __init__(self, rule_repository, override_store, catalog=None, agents=None,
                 settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.rule_repository = rule_repository
        self.override_store = override_store
        self.catalog = catalog
        self.agents = agents

    def _context(self, wholesale_price: float, agent_id: Optional[str] = None,
                 country_code: Optional[str] = None, plan_id: Optional[str] = None,
                 supplier_plan_id: Optional[str] = None,
                 partner_type: Optional[str] = None) -> PricingContext:
        return PricingContext(
            wholesale_price=wholesale_price,
            agent_id=agent_id or None,
            country_code=country_code or None,
            plan_id=plan_id or None,
            supplier_plan_id=supplier_plan_id or None,
            partner_type=partner_type or None,
        )

    def explain_price(self, ctx: PricingContext) -> PriceResult:
        """Resolve a price and keep the trace of how it was chosen."""
        result = resolve_price(
            self.rule_repository.list_active_rules(),
            self.override_store,
            ctx,
            default_multiplier=self.settings.default_multiplier,
            partner_multipliers=self.settings.partner_multipliers,
        )
        logger.debug(
            "price agent=%s plan=%s country=%s -> %.4f (%s %s)",
            ctx.agent_id, ctx.plan_id, ctx.country_code,
            result.retail_price, result.source.value, result.rule_id or '-',
        )
        return result

    def calculate_price(self, wholesale_price: float, agent_id: Optional[str] = None,
                        country_code: Optional[str] = None, plan_id: Optional[str] = None,
                        supplier_plan_id: Optional[str] = None) -> float:
        """
        Calculate a retail price for one plan.

        Never raises for numeric input; the partner-type tier is not consulted.
        """
        ctx = self._context(wholesale_price, agent_id, country_code, plan_id, supplier_plan_id)
        return self.explain_price(ctx).retail_price

    def explain_plan(self, agent_id: str, plan_id: str) -> Optional[PriceResult]:
        """
        Resolve one catalog plan for an agent, as the batch path does.

        The agent's partner type is consulted. Returns None when the plan has
        no override and is not in the catalog.
        """
        override = self.override_store.get(agent_id, plan_id)
        if override is not None:
            result = PriceResult(retail_price=max(0.0, float(override.retail_price)),
                                 source=PriceSource.OVERRIDE)
            result.add_trace("Override", f"Agent {agent_id} fixed price for plan {plan_id}",
                             f"{result.retail_price:.4f}")
            return result

        plan = self.catalog.get(plan_id) if self.catalog is not None else None
        if plan is None:
            return None

        partner_type = self.agents.get_partner_type(agent_id) if self.agents is not None else None
        ctx = self._context(
            plan.wholesale_price,
            agent_id=agent_id,
            country_code=plan.country_code,
            plan_id=plan.plan_id,
            supplier_plan_id=plan.supplier_plan_id,
            partner_type=partner_type,
        )
        return self.explain_price(ctx)

    def batch_prices(self, agent_id: str, plan_ids: list[str]) -> dict[str, float]:
        """
        Price many catalog plans for one agent.

        Overrides are returned as-is; other plans need a catalog entry for
        their wholesale price and are omitted from the result otherwise.
        """
        prices: dict[str, float] = {}
        missing = 0

        for plan_id in dict.fromkeys(plan_ids):
            result = self.explain_plan(agent_id, plan_id)
            if result is None:
                missing += 1
                continue
            prices[plan_id] = result.retail_price

        if missing:
            logger.info("batch prices: %d of %d plans not in catalog for agent %s",
                        missing, len(plan_ids), agent_id)
        return prices
