"""
Data models for the pricing engine.

Uses dataclasses for structured, type-safe data representation.
Rule and markup discriminators are closed enums; raw table values are
converted at the parsing boundary (see rules/rule_parser.py).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RuleType(str, Enum):
    """What a pricing rule targets."""
    PLAN = "plan"
    AGENT = "agent"
    COUNTRY = "country"
    DEFAULT = "default"


class MarkupType(str, Enum):
    """How a rule turns a wholesale price into a retail price."""
    PERCENT = "percent"
    FIXED = "fixed"
    FIXED_PRICE = "fixed_price"


class PriceSource(str, Enum):
    """Which tier of the resolution chain produced a price."""
    OVERRIDE = "override"
    RULE = "rule"
    PARTNER = "partner"
    DEFAULT = "default"


@dataclass
class TraceStep:
    """A single step in the pricing resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass
class PricingRule:
    """A markup rule matched against a pricing context."""
    rule_id: str
    rule_type: RuleType
    markup_type: MarkupType
    markup_value: float
    target_id: Optional[str] = None  # plan/supplier-plan id, agent id or country code
    agent_filter: Optional[str] = None  # plan rules only
    priority: int = 50  # lower = higher precedence
    active: bool = True

    # Carried and persisted, never enforced by matching
    min_order_amount: Optional[float] = None
    max_order_amount: Optional[float] = None

    record_id: Optional[str] = None  # id in the external price sheet, if synced
    notes: Optional[str] = None


@dataclass
class AgentPricingOverride:
    """An explicit retail price for one (agent, plan) pair."""
    agent_id: str
    plan_id: str
    retail_price: float

    @property
    def key(self) -> tuple[str, str]:
        return (self.agent_id, self.plan_id)


@dataclass
class PricingContext:
    """Resolution input. Which ids are present decides which rules can match."""
    wholesale_price: float
    agent_id: Optional[str] = None
    country_code: Optional[str] = None
    plan_id: Optional[str] = None
    supplier_plan_id: Optional[str] = None

    # Only the server-side batch path fills this in
    partner_type: Optional[str] = None


@dataclass
class PriceResult:
    """Resolved retail price with the reason it was chosen."""
    retail_price: float
    source: PriceSource
    rule_id: Optional[str] = None
    trace: list[TraceStep] = field(default_factory=list)

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the trace for this price."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"→ {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"→ {t.step}: {t.description}")
        return "\n".join(lines)
