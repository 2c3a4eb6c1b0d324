#!/usr/bin/env python
"""
Print how a retail price is resolved for one agent and plan.

Usage:
    python scripts/explain_price.py --agent AGENT_ID --plan PLAN_ID
    python scripts/explain_price.py --wholesale 10 --country JP
"""
import argparse
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from esim_pricing.api.state import build_state
from esim_pricing.core.logging import init_logging
from esim_pricing.engine.models import PricingContext


def main():
    parser = argparse.ArgumentParser(description="Explain a retail price")
    parser.add_argument("--agent", help="agent id")
    parser.add_argument("--plan", help="catalog plan id")
    parser.add_argument("--supplier-plan", help="supplier plan id")
    parser.add_argument("--country", help="ISO country code")
    parser.add_argument("--wholesale", type=float, help="wholesale price (defaults to the catalog price)")
    parser.add_argument("--partner", action="store_true",
                        help="use the agent's partner type, as the batch price endpoint does")
    args = parser.parse_args()

    init_logging(root_level="WARNING")
    state = build_state()

    plan = state.catalog.get(args.plan) if args.plan else None
    wholesale = args.wholesale
    if wholesale is None:
        if plan is None:
            parser.error("--wholesale is required when --plan is not in the catalog")
        wholesale = plan.wholesale_price

    ctx = PricingContext(
        wholesale_price=wholesale,
        agent_id=args.agent,
        country_code=args.country or (plan.country_code if plan else None),
        plan_id=args.plan,
        supplier_plan_id=args.supplier_plan or (plan.supplier_plan_id if plan else None),
        partner_type=state.agents.get_partner_type(args.agent) if args.partner and args.agent else None,
    )

    print(f"Rules loaded: {len(state.rule_repository.list_active_rules())} active")
    print(f"Context: {ctx}")
    print()

    result = state.engine.explain_price(ctx)
    print(result.get_trace_text())
    print()
    print(f"Retail price: {result.retail_price:.2f} ({result.source.value}"
          f"{', ' + result.rule_id if result.rule_id else ''})")


if __name__ == "__main__":
    main()
