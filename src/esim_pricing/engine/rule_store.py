"""
Rule Store - Holds the active pricing rule set.

There is no incremental update: any upstream change calls refresh(), which
re-reads the entire table. Listeners registered with subscribe() are told
after each refresh. A table that cannot be read degrades to an empty rule set,
so every price falls back to the default multiplier.
"""
import csv
import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

from .models import PricingRule

logger = logging.getLogger(__name__)

Listener = Callable[[list[PricingRule]], None]


class RuleRepository:
    """Base rule repository. Subclasses implement _fetch_all()."""

    def __init__(self):
        self._rules: list[PricingRule] = []
        self._listeners: list[Listener] = []
        self.loaded = False
        self.last_errors: list[str] = []

    def _fetch_all(self) -> list[PricingRule]:
        raise NotImplementedError

    def refresh(self) -> list[PricingRule]:
        """Re-fetch the full rule table and notify listeners."""
        try:
            rules = self._fetch_all()
            self.loaded = True
        except (OSError, ValueError, OverflowError, csv.Error) as e:
            logger.error("rule store: refresh failed, using empty rule set: %s", e)
            rules = []
            self.loaded = False

        # Stable order: priority, then rule id
        self._rules = sorted(rules, key=lambda r: (r.priority, r.rule_id))
        logger.info(
            "rule store: loaded %d rules (%d active)",
            len(self._rules),
            sum(1 for r in self._rules if r.active),
        )

        for listener in list(self._listeners):
            listener(self.list_active_rules())
        return self._rules

    def list_rules(self) -> list[PricingRule]:
        return list(self._rules)

    def list_active_rules(self) -> list[PricingRule]:
        return [r for r in self._rules if r.active]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a refresh listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe


class InMemoryRuleRepository(RuleRepository):
    """Rule repository over a plain list (tests, embedding)."""

    def __init__(self, rules: Optional[Iterable[PricingRule]] = None):
        super().__init__()
        self._source = list(rules or [])
        self.refresh()

    def replace(self, rules: Iterable[PricingRule]):
        """Swap the backing rules, as an upstream change would, and refresh."""
        self._source = list(rules)
        self.refresh()

    def _fetch_all(self) -> list[PricingRule]:
        return list(self._source)


class CsvRuleRepository(RuleRepository):
    """Rule repository backed by the pricing_rules.csv table."""

    def __init__(self, rules_csv: Path):
        super().__init__()
        self.rules_csv = rules_csv
        self.refresh()

    def _fetch_all(self) -> list[PricingRule]:
        from ..rules.rule_parser import load_rules_csv

        if not self.rules_csv.exists():
            raise FileNotFoundError(f"Rules table not found at {self.rules_csv}")
        rules, errors = load_rules_csv(self.rules_csv)
        self.last_errors = errors
        return rules
