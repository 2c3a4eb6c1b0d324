"""
Rule Parser - Validates raw pricing-rule rows and builds PricingRule objects.

This is the only place raw rule_type / markup_type strings are interpreted.
Unknown rule types are rejected. Unknown markup types keep the row but fall
back to the default markup (percent 300, i.e. 4x wholesale).
"""
import csv
import logging
import math
from pathlib import Path
from typing import Optional

from ..engine.models import MarkupType, PricingRule, RuleType

logger = logging.getLogger(__name__)

# Percent value equal to the default 4x multiplier
DEFAULT_MARKUP_PERCENT = 300.0

# Older rule type names still found in exported tables
RULE_TYPE_ALIASES = {'global': 'default', 'supplier_plan': 'plan'}

CSV_COLUMNS = [
    'rule_id', 'rule_type', 'target_id', 'agent_filter', 'markup_type',
    'markup_value', 'min_order_amount', 'max_order_amount', 'active',
    'priority', 'record_id', 'notes'
]


def parse_bool(value) -> bool:
    """Parse a boolean from a table cell."""
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ('true', '1', 'yes', 'on')


def parse_optional_str(value) -> Optional[str]:
    """Parse optional string (empty = None)."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_optional_float(value) -> Optional[float]:
    """Parse optional float."""
    text = parse_optional_str(value)
    if text is None:
        return None
    return float(text)


def parse_rule_type(value) -> Optional[RuleType]:
    text = (parse_optional_str(value) or '').lower()
    text = RULE_TYPE_ALIASES.get(text, text)
    try:
        return RuleType(text)
    except ValueError:
        return None


def parse_markup_type(value) -> Optional[MarkupType]:
    text = (parse_optional_str(value) or '').lower()
    try:
        return MarkupType(text)
    except ValueError:
        return None


def parse_rule(row: dict, line_num: int) -> tuple[Optional[PricingRule], list[str], list[str]]:
    """
    Validate and parse a rule from a raw row.

    Returns (rule, errors, warnings) - rule is None if validation failed.
    """
    errors = []
    warnings = []

    rule_id = parse_optional_str(row.get('rule_id') or row.get('id'))
    if not rule_id:
        errors.append(f"Line {line_num}: rule_id is required")
        return None, errors, warnings

    rule_type = parse_rule_type(row.get('rule_type'))
    if rule_type is None:
        errors.append(
            f"Line {line_num}: invalid rule_type '{row.get('rule_type')}', "
            f"must be one of: {[t.value for t in RuleType]}"
        )
        return None, errors, warnings

    try:
        priority_raw = parse_optional_str(row.get('priority'))
        priority_num = float(priority_raw) if priority_raw is not None else 50.0
        # Whole numbers only; "10.0" is accepted, "1.7" and "inf" are not
        if not priority_num.is_integer():
            raise ValueError(priority_raw)
        priority = int(priority_num)
    except (ValueError, OverflowError):
        errors.append(f"Line {line_num}: priority must be an integer")
        return None, errors, warnings

    try:
        markup_value = parse_optional_float(row.get('markup_value'))
    except ValueError:
        errors.append(f"Line {line_num}: markup_value must be numeric")
        return None, errors, warnings

    markup_type = parse_markup_type(row.get('markup_type'))
    if markup_type is None:
        warnings.append(
            f"Line {line_num}: unknown markup_type '{row.get('markup_type')}', "
            f"using default {DEFAULT_MARKUP_PERCENT:g}% markup"
        )
        markup_type = MarkupType.PERCENT
        markup_value = DEFAULT_MARKUP_PERCENT
    elif markup_value is None or not math.isfinite(markup_value):
        errors.append(f"Line {line_num}: markup_value is required for {markup_type.value}")
        return None, errors, warnings

    try:
        min_order = parse_optional_float(row.get('min_order_amount'))
        max_order = parse_optional_float(row.get('max_order_amount'))
    except ValueError:
        errors.append(f"Line {line_num}: order amount bounds must be numeric")
        return None, errors, warnings

    target_id = parse_optional_str(row.get('target_id'))
    if rule_type == RuleType.DEFAULT:
        target_id = None
    elif target_id is None:
        warnings.append(f"Line {line_num}: {rule_type.value} rule has no target_id and will never match")

    active_raw = row.get('active', row.get('is_active', 'true'))

    return PricingRule(
        rule_id=rule_id,
        rule_type=rule_type,
        markup_type=markup_type,
        markup_value=markup_value,
        target_id=target_id,
        agent_filter=parse_optional_str(row.get('agent_filter')),
        priority=priority,
        active=parse_bool(active_raw),
        min_order_amount=min_order,
        max_order_amount=max_order,
        record_id=parse_optional_str(row.get('record_id')),
        notes=parse_optional_str(row.get('notes')),
    ), [], warnings


def rule_to_row(rule: PricingRule) -> dict:
    """Convert a rule to its table row format."""
    def _num(value: Optional[float]) -> str:
        return '' if value is None else str(value)

    return {
        'rule_id': rule.rule_id,
        'rule_type': rule.rule_type.value,
        'target_id': rule.target_id or '',
        'agent_filter': rule.agent_filter or '',
        'markup_type': rule.markup_type.value,
        'markup_value': _num(rule.markup_value),
        'min_order_amount': _num(rule.min_order_amount),
        'max_order_amount': _num(rule.max_order_amount),
        'active': 'true' if rule.active else 'false',
        'priority': str(rule.priority),
        'record_id': rule.record_id or '',
        'notes': rule.notes or '',
    }


def parse_rows(rows: list[dict], first_line: int = 2) -> tuple[list[PricingRule], list[str]]:
    """
    Parse many rows, keeping the good ones.

    Returns (rules, errors). Warnings are logged.
    """
    rules = []
    all_errors = []
    for line_num, row in enumerate(rows, start=first_line):
        rule, errors, warnings = parse_rule(row, line_num)
        for warning in warnings:
            logger.warning("rule parse: %s", warning)
        if errors:
            all_errors.extend(errors)
        elif rule:
            rules.append(rule)
    return rules, all_errors


def load_rules_csv(rules_csv: Path) -> tuple[list[PricingRule], list[str]]:
    """
    Load every rule in a rules CSV, active or not.

    Raises FileNotFoundError when the file is missing.
    """
    with open(rules_csv, 'r', newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        rows = [row for row in reader if any((v or '').strip() for v in row.values() if isinstance(v, str))]

    rules, errors = parse_rows(rows)
    for err in errors:
        logger.error("rule parse: %s", err)
    return rules, errors


def write_rules_csv(rules_csv: Path, rules: list[PricingRule]):
    """Write rules back to CSV."""
    rules_csv.parent.mkdir(parents=True, exist_ok=True)
    with open(rules_csv, 'w', encoding='utf-8', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for rule in rules:
            writer.writerow(rule_to_row(rule))
