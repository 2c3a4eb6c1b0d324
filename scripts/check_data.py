#!/usr/bin/env python
"""
Data check pipeline - loads every pricing table, reports problems and runs
the test suite.

Usage:
    python scripts/check_data.py [--skip-tests]
"""
import argparse
import subprocess
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from esim_pricing.config.settings import get_settings
from esim_pricing.core.logging import init_logging
from esim_pricing.data.catalog import AgentDirectory, PlanCatalog
from esim_pricing.engine.override_store import CsvOverrideStore
from esim_pricing.engine.rule_store import CsvRuleRepository


def main():
    parser = argparse.ArgumentParser(description="Validate pricing tables")
    parser.add_argument("--skip-tests", action="store_true", help="only check the data tables")
    args = parser.parse_args()

    init_logging(root_level="WARNING")
    settings = get_settings()

    print("=" * 60)
    print("ESIM PRICING DATA CHECK")
    print("=" * 60)
    print(f"Data dir: {settings.data_dir}")
    print()

    print("[1/3] Loading plan catalog...")
    catalog = PlanCatalog.from_csv(settings.plans_csv)
    if catalog.report["status"] != "success":
        print("\n❌ CATALOG FAILED")
        for error in catalog.report.get("errors", []):
            print(f"  ERROR: {error}")
        sys.exit(1)
    for warning in catalog.report["warnings"]:
        print(f"  WARNING: {warning}")

    print("[2/3] Loading rules, overrides and agents...")
    rules = CsvRuleRepository(settings.rules_csv)
    overrides = CsvOverrideStore(settings.overrides_csv)
    agents = AgentDirectory.from_csv(settings.agents_csv)

    if not rules.loaded:
        print("\n❌ RULES TABLE COULD NOT BE READ - every price would use the default multiplier")
        sys.exit(1)
    for error in rules.last_errors:
        print(f"  RULE ERROR: {error}")

    unknown_plans = sorted({o.plan_id for o in overrides.list_all() if o.plan_id not in catalog})
    for plan_id in unknown_plans:
        print(f"  WARNING: override for plan '{plan_id}' not in catalog")

    if not args.skip_tests:
        print("[3/3] Running tests...")
        test_result = subprocess.run(
            [sys.executable, '-m', 'pytest', 'tests', '-q', '--tb=short'],
            cwd=Path(__file__).parent.parent
        )
        if test_result.returncode != 0:
            print("\n❌ TESTS FAILED")
            sys.exit(1)

    print()
    print("=" * 60)
    print("✅ CHECK COMPLETE")
    print("=" * 60)
    print()
    print("Summary:")
    print(f"  Plans: {catalog.report['metrics']['final_plan_count']}")
    print(f"  Duplicates removed: {catalog.report['metrics']['duplicates_removed']}")
    print(f"  Missing wholesale: {catalog.report['metrics']['missing_wholesale']}")
    print(f"  Rules: {len(rules.list_rules())} ({len(rules.list_active_rules())} active, "
          f"{len(rules.last_errors)} rejected)")
    print(f"  Overrides: {overrides.count()}")
    print(f"  Agents: {len(agents)}")


if __name__ == "__main__":
    main()
