#!/usr/bin/env python
"""
Replace an agent's price overrides from a plan_id,retail_price CSV.

Usage:
    python scripts/import_overrides.py --agent AGENT_ID prices.csv
    python scripts/import_overrides.py --agent AGENT_ID --template > prices.csv
"""
import argparse
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from esim_pricing.api.state import build_state
from esim_pricing.core.logging import init_logging
from esim_pricing.services.import_service import template_csv


def main():
    parser = argparse.ArgumentParser(description="Bulk import agent price overrides")
    parser.add_argument("--agent", required=True, help="agent id whose overrides are replaced")
    parser.add_argument("csv_file", nargs="?", help="CSV with plan_id and retail_price columns")
    parser.add_argument("--template", action="store_true", help="print an import template and exit")
    args = parser.parse_args()

    init_logging(root_level="INFO")
    state = build_state()

    if args.template:
        plan_ids = [p.plan_id for p in state.catalog.plans()[:2]]
        sys.stdout.write(template_csv(plan_ids))
        return

    if not args.csv_file:
        parser.error("csv_file is required unless --template is given")

    path = Path(args.csv_file)
    if not path.exists():
        print(f"❌ File not found: {path}")
        sys.exit(1)

    report = state.import_service.import_csv(args.agent, path)
    summary = report.summary()

    print(f"Rows read:          {summary['total_rows']}")
    print(f"Valid:              {summary['valid']}")
    print(f"Inserted:           {summary['inserted']}")
    print(f"Skipped (errors):   {summary['skipped']}")
    print(f"Skipped (#N/A etc): {summary['skipped_sentinels']}")
    print(f"Duplicates merged:  {summary['duplicates']}")
    for error in summary['error_sample']:
        print(f"  {error}")

    if not report.valid:
        print("\n❌ No valid rows; existing overrides kept")
        sys.exit(1)
    print("\n✅ Import complete")


if __name__ == "__main__":
    main()
