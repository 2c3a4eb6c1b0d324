"""
Override Store - Per-agent fixed retail prices.

An override is keyed by (agent_id, plan_id) and beats every pricing rule.
"""
import logging
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from .models import AgentPricingOverride

logger = logging.getLogger(__name__)

OVERRIDE_COLUMNS = ['agent_id', 'plan_id', 'retail_price']


class OverrideStore:
    """In-memory override table. Subclasses persist after each write."""

    def __init__(self, records: Optional[Iterable[AgentPricingOverride]] = None):
        self._records: dict[tuple[str, str], AgentPricingOverride] = {}
        for record in records or []:
            self._records[record.key] = record

    def _persist(self):
        """Hook for durable stores."""

    def get(self, agent_id: Optional[str], plan_id: Optional[str]) -> Optional[AgentPricingOverride]:
        if not agent_id or not plan_id:
            return None
        return self._records.get((agent_id, plan_id))

    def resolve(self, agent_id: Optional[str], plan_id: Optional[str]) -> Optional[float]:
        """Return the override retail price, or None to fall through to rules."""
        record = self.get(agent_id, plan_id)
        return record.retail_price if record else None

    def list_for_agent(self, agent_id: str) -> list[AgentPricingOverride]:
        return [r for r in self._records.values() if r.agent_id == agent_id]

    def list_all(self) -> list[AgentPricingOverride]:
        return list(self._records.values())

    def count(self) -> int:
        return len(self._records)

    def upsert(self, agent_id: str, plan_id: str, retail_price: float) -> AgentPricingOverride:
        record = AgentPricingOverride(agent_id=agent_id, plan_id=plan_id, retail_price=float(retail_price))
        self._records[record.key] = record
        self._persist()
        return record

    def delete(self, agent_id: str, plan_id: str) -> bool:
        """Delete one override, reverting the plan to rule pricing for that agent."""
        removed = self._records.pop((agent_id, plan_id), None)
        if removed is not None:
            self._persist()
        return removed is not None

    def delete_all(self, agent_id: str) -> int:
        keys = [k for k in self._records if k[0] == agent_id]
        for key in keys:
            del self._records[key]
        if keys:
            self._persist()
        return len(keys)

    def insert_batch(self, records: list[AgentPricingOverride]) -> int:
        """
        Insert new overrides.

        Raises ValueError if any (agent, plan) already exists or repeats
        within the batch; nothing from that batch is written.
        """
        seen = set()
        for record in records:
            if record.key in self._records or record.key in seen:
                raise ValueError(
                    f"Override for agent '{record.agent_id}' and plan '{record.plan_id}' already exists"
                )
            seen.add(record.key)

        for record in records:
            self._records[record.key] = record
        self._persist()
        return len(records)


InMemoryOverrideStore = OverrideStore


class CsvOverrideStore(OverrideStore):
    """Override store backed by the agent_pricing.csv table."""

    def __init__(self, overrides_csv: Path):
        super().__init__()
        self.overrides_csv = overrides_csv
        self.loaded = False
        self.reload()

    def reload(self):
        """Re-read the table. An unreadable table leaves the store empty."""
        self._records = {}
        if not self.overrides_csv.exists():
            logger.info("override store: %s not found, starting empty", self.overrides_csv)
            self.loaded = True
            return

        try:
            df = pd.read_csv(self.overrides_csv, dtype=str, keep_default_na=False)
        except (OSError, ValueError, pd.errors.ParserError) as e:
            logger.error("override store: failed to read %s: %s", self.overrides_csv, e)
            self.loaded = False
            return

        for col in OVERRIDE_COLUMNS:
            if col not in df.columns:
                logger.error("override store: missing column '%s' in %s", col, self.overrides_csv)
                self.loaded = False
                return
            df[col] = df[col].astype(str).str.strip()

        skipped = 0
        for row in df.to_dict(orient='records'):
            try:
                price = float(row['retail_price'])
            except ValueError:
                skipped += 1
                continue
            if not row['agent_id'] or not row['plan_id']:
                skipped += 1
                continue
            record = AgentPricingOverride(row['agent_id'], row['plan_id'], price)
            self._records[record.key] = record

        if skipped:
            logger.warning("override store: skipped %d unreadable rows", skipped)
        self.loaded = True

    def _persist(self):
        df = pd.DataFrame(
            [
                {'agent_id': r.agent_id, 'plan_id': r.plan_id, 'retail_price': r.retail_price}
                for r in self._records.values()
            ],
            columns=OVERRIDE_COLUMNS,
        )
        self.overrides_csv.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(self.overrides_csv, index=False)
