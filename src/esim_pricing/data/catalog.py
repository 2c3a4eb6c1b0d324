"""
Plan Catalog & Agent Directory - Read-only lookup tables for pricing.

The plan catalog supplies wholesale prices (and the country / supplier ids
used for rule matching); the agent directory supplies partner types and the
user that owns each agent account.
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

logger = logging.getLogger(__name__)

PLAN_COLUMNS = ['plan_id', 'supplier_plan_id', 'country_code', 'wholesale_price', 'title']
AGENT_COLUMNS = ['agent_id', 'user_id', 'partner_type', 'company_name']


def get_file_hash(path: Path) -> str:
    """Get SHA256 hash of a file."""
    if not path.exists():
        return ""
    with open(path, 'rb') as f:
        return hashlib.sha256(f.read()).hexdigest()[:12]


@dataclass
class Plan:
    """A sellable eSIM plan."""
    plan_id: str
    wholesale_price: float
    supplier_plan_id: Optional[str] = None
    country_code: Optional[str] = None
    title: Optional[str] = None


class PlanCatalog:
    """
    Lookup of plans by id.

    Duplicate plan ids keep the first row. Rows without a numeric wholesale
    price are dropped and counted in the load report.
    """

    def __init__(self, plans: Optional[list[Plan]] = None):
        self._plans: dict[str, Plan] = {}
        self.report: dict = {"status": "empty", "metrics": {}, "warnings": []}
        if plans:
            for plan in plans:
                self._plans.setdefault(plan.plan_id, plan)
            self.report = {
                "status": "success",
                "metrics": {"final_plan_count": len(self._plans)},
                "warnings": [],
            }

    @classmethod
    def from_csv(cls, plans_csv: Path) -> 'PlanCatalog':
        """Load the catalog from plans.csv."""
        catalog = cls()
        catalog.report = {
            "timestamp": datetime.now().isoformat(),
            "status": "pending",
            "input_file": {"path": str(plans_csv), "hash": get_file_hash(plans_csv)},
            "metrics": {},
            "warnings": [],
            "errors": [],
        }

        if not plans_csv.exists():
            msg = f"Plan catalog not found at {plans_csv}"
            catalog.report["errors"].append(msg)
            catalog.report["status"] = "failed"
            logger.error("catalog: %s", msg)
            return catalog

        try:
            df = pd.read_csv(plans_csv, dtype=str, keep_default_na=False)
        except (OSError, ValueError) as e:
            msg = f"Failed to read {plans_csv}: {e}"
            catalog.report["errors"].append(msg)
            catalog.report["status"] = "failed"
            logger.error("catalog: %s", msg)
            return catalog

        if 'plan_id' not in df.columns or 'wholesale_price' not in df.columns:
            msg = "plans table needs plan_id and wholesale_price columns"
            catalog.report["errors"].append(msg)
            catalog.report["status"] = "failed"
            logger.error("catalog: %s", msg)
            return catalog

        for col in PLAN_COLUMNS:
            if col not in df.columns:
                df[col] = ''
            df[col] = df[col].astype(str).str.strip()

        df = df[df['plan_id'] != '']
        catalog.report["metrics"]["initial_plan_count"] = len(df)

        duplicates = int(df['plan_id'].duplicated().sum())
        df = df.drop_duplicates('plan_id', keep='first')
        catalog.report["metrics"]["duplicates_removed"] = duplicates
        if duplicates:
            catalog.report["warnings"].append(f"{duplicates} duplicate plan ids removed")

        df['wholesale'] = pd.to_numeric(df['wholesale_price'], errors='coerce')
        missing = int(df['wholesale'].isna().sum())
        catalog.report["metrics"]["missing_wholesale"] = missing
        if missing:
            catalog.report["warnings"].append(f"{missing} plans have no wholesale price")
        df = df.dropna(subset=['wholesale'])

        for row in df.to_dict(orient='records'):
            catalog._plans[row['plan_id']] = Plan(
                plan_id=row['plan_id'],
                wholesale_price=float(row['wholesale']),
                supplier_plan_id=row['supplier_plan_id'] or None,
                country_code=row['country_code'].upper() or None,
                title=row['title'] or None,
            )

        catalog.report["metrics"]["final_plan_count"] = len(catalog._plans)
        catalog.report["status"] = "success"
        for warning in catalog.report["warnings"]:
            logger.warning("catalog: %s", warning)
        logger.info("catalog: loaded %d plans from %s", len(catalog._plans), plans_csv)
        return catalog

    def __len__(self) -> int:
        return len(self._plans)

    def __contains__(self, plan_id: str) -> bool:
        return plan_id in self._plans

    def get(self, plan_id: str) -> Optional[Plan]:
        return self._plans.get(plan_id)

    def get_wholesale_price(self, plan_id: str) -> Optional[float]:
        plan = self._plans.get(plan_id)
        return plan.wholesale_price if plan else None

    def find_by_supplier_plan_id(self, supplier_plan_id: str) -> Optional[Plan]:
        """Case-insensitive lookup by the supplier's own plan code."""
        wanted = (supplier_plan_id or '').strip().lower()
        if not wanted:
            return None
        for plan in self._plans.values():
            if plan.supplier_plan_id and plan.supplier_plan_id.lower() == wanted:
                return plan
        return None

    def known_plans(self) -> dict[str, float]:
        """Map of plan_id -> wholesale price, as used by the import validator."""
        return {pid: p.wholesale_price for pid, p in self._plans.items()}

    def plans(self) -> list[Plan]:
        return list(self._plans.values())


@dataclass
class Agent:
    """A travel agent account."""
    agent_id: str
    user_id: Optional[str] = None
    partner_type: Optional[str] = None
    company_name: Optional[str] = None


class AgentDirectory:
    """Lookup of agent profiles by agent id."""

    def __init__(self, agents: Optional[list[Agent]] = None):
        self._agents: dict[str, Agent] = {a.agent_id: a for a in agents or []}

    @classmethod
    def from_csv(cls, agents_csv: Path) -> 'AgentDirectory':
        directory = cls()
        if not agents_csv.exists():
            logger.warning("agents: %s not found, directory is empty", agents_csv)
            return directory

        try:
            df = pd.read_csv(agents_csv, dtype=str, keep_default_na=False)
        except (OSError, ValueError) as e:
            logger.error("agents: failed to read %s: %s", agents_csv, e)
            return directory

        if 'agent_id' not in df.columns:
            logger.error("agents: %s has no agent_id column", agents_csv)
            return directory

        for col in AGENT_COLUMNS:
            if col not in df.columns:
                df[col] = ''
            df[col] = df[col].astype(str).str.strip()

        for row in df.to_dict(orient='records'):
            if not row['agent_id']:
                continue
            directory._agents[row['agent_id']] = Agent(
                agent_id=row['agent_id'],
                user_id=row['user_id'] or None,
                partner_type=row['partner_type'].lower() or None,
                company_name=row['company_name'] or None,
            )
        logger.info("agents: loaded %d agents from %s", len(directory._agents), agents_csv)
        return directory

    def __len__(self) -> int:
        return len(self._agents)

    def agent_ids(self) -> list[str]:
        return list(self._agents)

    def get(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def get_partner_type(self, agent_id: str) -> Optional[str]:
        agent = self._agents.get(agent_id)
        return agent.partner_type if agent else None

    def owner_of(self, agent_id: str) -> Optional[str]:
        """User id that owns the agent account, if known."""
        agent = self._agents.get(agent_id)
        return agent.user_id if agent else None
