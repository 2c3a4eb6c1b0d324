"""
Rule Matcher - Filters pricing rules to a context and picks the winner.

Selection is priority first (lower number wins), then specificity:
plan+agent (5) > plan (4) > agent (3) > country (2) > default (1).
"""
from typing import Iterable, Optional

from .models import PricingContext, PricingRule, RuleType


def _norm_id(value: Optional[str]) -> str:
    """Agent and supplier-plan ids compare trimmed and case-insensitive."""
    return str(value or '').strip().lower()


def _norm_country(value: Optional[str]) -> str:
    return str(value or '').strip().upper()


def plan_matches(rule: PricingRule, ctx: PricingContext) -> bool:
    """True when a plan rule's target is the context's plan or supplier plan."""
    target = (rule.target_id or '').strip()
    if not target:
        return False
    if ctx.plan_id and target == ctx.plan_id.strip():
        return True
    if ctx.supplier_plan_id and _norm_id(target) == _norm_id(ctx.supplier_plan_id):
        return True
    return False


def agent_filter_matches(rule: PricingRule, ctx: PricingContext) -> bool:
    return bool(rule.agent_filter) and bool(ctx.agent_id) and \
        _norm_id(rule.agent_filter) == _norm_id(ctx.agent_id)


def rule_applies(rule: PricingRule, ctx: PricingContext) -> bool:
    """Inclusion test for a single active rule."""
    if rule.rule_type == RuleType.PLAN:
        if not plan_matches(rule, ctx):
            return False
        # agent_filter narrows a plan rule to one agent
        if rule.agent_filter:
            return agent_filter_matches(rule, ctx)
        return True

    if rule.rule_type == RuleType.AGENT:
        return bool(ctx.agent_id) and _norm_id(rule.target_id) == _norm_id(ctx.agent_id)

    if rule.rule_type == RuleType.COUNTRY:
        return bool(ctx.country_code) and _norm_country(rule.target_id) == _norm_country(ctx.country_code)

    if rule.rule_type == RuleType.DEFAULT:
        return True

    return False


def candidates(rules: Iterable[PricingRule], ctx: PricingContext) -> list[PricingRule]:
    """
    Find all active rules that match the given context.

    Order of the input is preserved; selection ties go to the first seen.
    """
    return [rule for rule in rules if rule.active and rule_applies(rule, ctx)]


def specificity(rule: PricingRule, ctx: PricingContext) -> int:
    """Score how narrowly a rule targets the context (higher = more specific)."""
    if rule.rule_type == RuleType.PLAN and plan_matches(rule, ctx):
        if agent_filter_matches(rule, ctx):
            return 5
        return 4
    if rule.rule_type == RuleType.AGENT and ctx.agent_id and \
            _norm_id(rule.target_id) == _norm_id(ctx.agent_id):
        return 3
    if rule.rule_type == RuleType.COUNTRY and ctx.country_code and \
            _norm_country(rule.target_id) == _norm_country(ctx.country_code):
        return 2
    return 1


def select_rule(matched: list[PricingRule], ctx: PricingContext) -> Optional[PricingRule]:
    """
    Pick exactly one rule from the candidates.

    Lower priority number wins; equal priority goes to the higher
    specificity score; remaining ties keep the first-seen rule.
    Returns None when there are no candidates.
    """
    best = None
    best_score = 0
    for rule in matched:
        score = specificity(rule, ctx)
        if best is None:
            best, best_score = rule, score
            continue
        if rule.priority < best.priority:
            best, best_score = rule, score
        elif rule.priority == best.priority and score > best_score:
            best, best_score = rule, score
    return best
