"""
Rules Service - CRUD operations for pricing rules.
Handles reading/writing pricing_rules.csv and refreshing the live rule set.
"""
import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from ..engine.models import MarkupType, PricingRule, RuleType
from ..rules.rule_parser import load_rules_csv, write_rules_csv

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)
EXCEL_NA = '#N/A'

# Synced agent prices always win their priority band
SYNCED_RULE_PRIORITY = 1

# Fields an update may change but never clear
REQUIRED_FIELDS = ('rule_type', 'markup_type', 'markup_value', 'priority', 'active')


class RuleValidationError(ValueError):
    """A rule write was refused because the resulting rule is invalid."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass
class ValidationResult:
    """Result of rule validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class SyncResult:
    """Outcome for one record of an external price-sheet sync."""
    record_id: str
    status: str  # "success" or "error"
    rule_id: Optional[str] = None
    error: Optional[str] = None


class RulesService:
    """Service for managing pricing rules."""

    def __init__(self, rules_csv_path: Path, rule_repository=None, catalog=None, override_store=None):
        self.rules_csv_path = rules_csv_path
        self.rule_repository = rule_repository
        self.catalog = catalog
        self.override_store = override_store

    def list_rules(self, include_inactive: bool = True) -> list[PricingRule]:
        """List all rules from CSV."""
        if not self.rules_csv_path.exists():
            return []
        rules, _ = load_rules_csv(self.rules_csv_path)
        if include_inactive:
            return rules
        return [r for r in rules if r.active]

    def get_rule(self, rule_id: str) -> Optional[PricingRule]:
        """Get a single rule by ID."""
        for rule in self.list_rules():
            if rule.rule_id == rule_id:
                return rule
        return None

    def create_rule(self, rule: PricingRule, auto_refresh: bool = True) -> PricingRule:
        """Create a new rule."""
        if not rule.rule_id:
            rule.rule_id = self._generate_rule_id(rule)

        if self.get_rule(rule.rule_id):
            raise ValueError(f"Rule with ID '{rule.rule_id}' already exists")

        rules = self.list_rules()
        rules.append(rule)
        self._write_rules(rules)

        if auto_refresh:
            self.refresh()

        logger.info("rules: created %s (%s %s)", rule.rule_id, rule.rule_type.value, rule.target_id or '*')
        return rule

    def update_rule(self, rule_id: str, updates: dict, auto_refresh: bool = True) -> PricingRule:
        """Update an existing rule."""
        rules = self.list_rules()

        for i, rule in enumerate(rules):
            if rule.rule_id == rule_id:
                rules[i] = self._apply_updates(rule, updates)
                break
        else:
            raise ValueError(f"Rule with ID '{rule_id}' not found")

        self._write_rules(rules)

        if auto_refresh:
            self.refresh()

        return rules[i]

    def _apply_updates(self, rule: PricingRule, updates: dict) -> PricingRule:
        """
        Build the updated rule and validate it.

        Raises RuleValidationError if a required field is cleared or the
        result fails validate_rule(); nothing is written in that case.
        """
        changes = {k: v for k, v in updates.items() if hasattr(rule, k) and k != 'rule_id'}

        errors = [f"{k} cannot be empty" for k in REQUIRED_FIELDS if k in changes and changes[k] is None]
        try:
            if changes.get('rule_type') is not None:
                changes['rule_type'] = RuleType(changes['rule_type'])
            if changes.get('markup_type') is not None:
                changes['markup_type'] = MarkupType(changes['markup_type'])
        except ValueError as e:
            errors.append(str(e))
        if errors:
            raise RuleValidationError(errors)

        updated = replace(rule, **changes)
        validation = self.validate_rule(updated)
        if not validation.valid:
            raise RuleValidationError(validation.errors)
        return updated

    def delete_rule(self, rule_id: str, auto_refresh: bool = True) -> bool:
        """Delete a rule."""
        rules = self.list_rules()
        original_count = len(rules)
        rules = [r for r in rules if r.rule_id != rule_id]

        if len(rules) == original_count:
            raise ValueError(f"Rule with ID '{rule_id}' not found")

        self._write_rules(rules)

        if auto_refresh:
            self.refresh()

        logger.info("rules: deleted %s", rule_id)
        return True

    def validate_rule(self, rule: PricingRule) -> ValidationResult:
        """Validate a rule before saving."""
        result = ValidationResult(valid=True)

        if rule.rule_type != RuleType.DEFAULT and not rule.target_id:
            result.errors.append(f"target_id is required for {rule.rule_type.value} rules")
            result.valid = False

        if rule.agent_filter and rule.rule_type != RuleType.PLAN:
            result.errors.append("agent_filter is only allowed on plan rules")
            result.valid = False

        if rule.markup_value is None:
            result.errors.append("markup_value is required")
            result.valid = False
        elif rule.markup_type == MarkupType.FIXED_PRICE and rule.markup_value < 0:
            result.errors.append("fixed_price markup_value cannot be negative")
            result.valid = False
        elif rule.markup_type == MarkupType.PERCENT and rule.markup_value < -100:
            result.errors.append("percent markup_value below -100 would produce a negative price")
            result.valid = False

        if rule.min_order_amount is not None and rule.max_order_amount is not None:
            if rule.min_order_amount > rule.max_order_amount:
                result.errors.append("min_order_amount must not exceed max_order_amount")
                result.valid = False

        if rule.min_order_amount is not None or rule.max_order_amount is not None:
            result.warnings.append("Order amount bounds are stored but not applied when pricing")

        # Plan target should exist in catalog
        if rule.rule_type == RuleType.PLAN and rule.target_id and self.catalog is not None:
            if rule.target_id not in self.catalog and not self.catalog.find_by_supplier_plan_id(rule.target_id):
                result.warnings.append(f"Plan '{rule.target_id}' not found in plan catalog")

        if result.valid:
            result.warnings.extend(self._check_conflicts(rule))

        return result

    def _check_conflicts(self, rule: PricingRule) -> list[str]:
        """Check for rules that would tie with this one."""
        warnings = []
        for existing in self.list_rules():
            if existing.rule_id == rule.rule_id or not existing.active:
                continue

            same_target = (
                existing.rule_type == rule.rule_type and
                (existing.target_id or '').lower() == (rule.target_id or '').lower() and
                (existing.agent_filter or '').lower() == (rule.agent_filter or '').lower()
            )
            if same_target and existing.priority == rule.priority:
                warnings.append(
                    f"Ties with rule '{existing.rule_id}' at priority {rule.priority}; "
                    f"the first rule loaded wins"
                )
            elif same_target:
                warnings.append(
                    f"Overlaps rule '{existing.rule_id}' "
                    f"(priority {existing.priority} vs {rule.priority})"
                )
        return warnings

    def _generate_rule_id(self, rule: PricingRule) -> str:
        """Generate a unique rule ID."""
        base = rule.rule_type.value.upper()
        if rule.target_id:
            base += f"-{rule.target_id[:8].upper()}"
        if rule.agent_filter:
            base += f"-{rule.agent_filter[:6].upper()}"

        existing_ids = {r.rule_id for r in self.list_rules()}
        candidate = base
        counter = 1
        while candidate in existing_ids:
            candidate = f"{base}-{counter}"
            counter += 1

        return candidate

    def _write_rules(self, rules: list[PricingRule]):
        """Write rules back to CSV."""
        write_rules_csv(self.rules_csv_path, rules)

    def refresh(self):
        """Reload the live rule set after a write."""
        if self.rule_repository is not None:
            self.rule_repository.refresh()

    def sync_agent_prices(self, records: list[dict], deleted_record_ids: Optional[list[str]] = None) -> list[SyncResult]:
        """
        Apply an external price sheet of (agent, plan, final price) rows.

        Each record becomes a fixed_price plan rule filtered to its agent and
        keyed by record_id. Deleted record ids drop their rule and the
        matching agent override.
        """
        rules = self.list_rules()
        by_record = {r.record_id: i for i, r in enumerate(rules) if r.record_id}
        results = []

        for record in records:
            record_id = str(record.get('record_id') or '').strip()
            if not record_id:
                results.append(SyncResult(record_id='unknown', status='error', error='Missing record_id'))
                continue

            incoming = str(record.get('plan_id') or record.get('supplier_plan_id') or '').strip()
            if not incoming or incoming.upper() == EXCEL_NA:
                results.append(SyncResult(record_id=record_id, status='error', error='Missing plan_id'))
                continue

            plan_id = incoming
            if not UUID_RE.match(incoming):
                plan = self.catalog.find_by_supplier_plan_id(incoming) if self.catalog is not None else None
                if plan is None:
                    results.append(SyncResult(
                        record_id=record_id, status='error',
                        error=f"Plan not found for supplier_plan_id: {incoming}",
                    ))
                    continue
                plan_id = plan.plan_id

            agent_id = str(record.get('agent_id') or '').strip()
            if not agent_id:
                results.append(SyncResult(record_id=record_id, status='error', error='Missing agent_id'))
                continue

            try:
                final_price = float(record.get('final_price'))
            except (TypeError, ValueError):
                results.append(SyncResult(record_id=record_id, status='error', error='Invalid final_price'))
                continue

            rule = PricingRule(
                rule_id=f"SYNC-{record_id}",
                rule_type=RuleType.PLAN,
                markup_type=MarkupType.FIXED_PRICE,
                markup_value=final_price,
                target_id=plan_id,
                agent_filter=agent_id,
                priority=SYNCED_RULE_PRIORITY,
                active=True,
                min_order_amount=0.0,
                record_id=record_id,
            )
            if record_id in by_record:
                rule.rule_id = rules[by_record[record_id]].rule_id
                rules[by_record[record_id]] = rule
            else:
                by_record[record_id] = len(rules)
                rules.append(rule)
            results.append(SyncResult(record_id=record_id, status='success', rule_id=rule.rule_id))

        deleted = set(deleted_record_ids or [])
        if deleted:
            for rule in rules:
                if rule.record_id in deleted and rule.agent_filter and rule.target_id \
                        and self.override_store is not None:
                    self.override_store.delete(rule.agent_filter, rule.target_id)
            rules = [r for r in rules if r.record_id not in deleted]

        self._write_rules(rules)
        self.refresh()

        ok = sum(1 for r in results if r.status == 'success')
        logger.info("rules sync: %d upserted, %d errors, %d deleted", ok, len(results) - ok, len(deleted))
        return results

    def backfill_plan_targets(self) -> int:
        """Rewrite plan rules that target a supplier plan code to the catalog plan id."""
        if self.catalog is None:
            return 0

        rules = self.list_rules()
        changed = 0
        for i, rule in enumerate(rules):
            if rule.rule_type != RuleType.PLAN or not rule.target_id or rule.target_id in self.catalog:
                continue
            plan = self.catalog.find_by_supplier_plan_id(rule.target_id)
            if plan is None:
                logger.warning("backfill: no plan found for supplier_plan_id %s", rule.target_id)
                continue
            rules[i] = replace(rule, target_id=plan.plan_id)
            changed += 1

        if changed:
            self._write_rules(rules)
            self.refresh()
        logger.info("backfill: %d plan rules retargeted", changed)
        return changed

    def get_stats(self) -> dict:
        """Get statistics about rules."""
        rules = self.list_rules()
        active = [r for r in rules if r.active]
        by_type = {}
        for r in rules:
            by_type[r.rule_type.value] = by_type.get(r.rule_type.value, 0) + 1

        return {
            'total': len(rules),
            'active': len(active),
            'inactive': len(rules) - len(active),
            'synced': sum(1 for r in rules if r.record_id),
            'by_type': by_type,
        }
