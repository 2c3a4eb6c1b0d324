"""
Tests for the rule table parsing boundary.
"""
from esim_pricing.engine.models import MarkupType, RuleType
from esim_pricing.engine.pricing_engine import apply_markup
from esim_pricing.rules.rule_parser import (
    load_rules_csv, parse_bool, parse_rows, parse_rule, rule_to_row, write_rules_csv,
)


def _row(**overrides):
    row = {
        'rule_id': 'R1', 'rule_type': 'country', 'target_id': 'JP', 'agent_filter': '',
        'markup_type': 'percent', 'markup_value': '50', 'min_order_amount': '',
        'max_order_amount': '', 'active': 'true', 'priority': '10', 'record_id': '', 'notes': '',
    }
    row.update(overrides)
    return row


def test_parse_valid_row():
    rule, errors, warnings = parse_rule(_row(), 2)
    assert errors == [] and warnings == []
    assert rule.rule_type == RuleType.COUNTRY
    assert rule.markup_type == MarkupType.PERCENT
    assert rule.markup_value == 50.0
    assert rule.priority == 10


def test_unknown_markup_type_falls_back_to_default_multiplier():
    rule, errors, warnings = parse_rule(_row(markup_type='tiered', markup_value='12'), 2)
    assert errors == []
    assert len(warnings) == 1 and 'tiered' in warnings[0]
    assert apply_markup(10, rule) == 40, "Unknown markup type should price at 4x wholesale"


def test_unknown_rule_type_is_rejected():
    rule, errors, _ = parse_rule(_row(rule_type='region'), 5)
    assert rule is None
    assert errors and errors[0].startswith("Line 5:")


def test_older_rule_type_names_are_accepted():
    rule, _, _ = parse_rule(_row(rule_type='global'), 2)
    assert rule.rule_type == RuleType.DEFAULT
    rule, _, _ = parse_rule(_row(rule_type='supplier_plan', target_id='JP-5GB'), 2)
    assert rule.rule_type == RuleType.PLAN


def test_missing_markup_value_is_an_error():
    rule, errors, _ = parse_rule(_row(markup_value=''), 3)
    assert rule is None
    assert "markup_value" in errors[0]


def test_default_rule_drops_target():
    rule, _, _ = parse_rule(_row(rule_type='default', target_id='ignored'), 2)
    assert rule.target_id is None


def test_missing_priority_defaults_to_50():
    rule, _, _ = parse_rule(_row(priority=''), 2)
    assert rule.priority == 50


def test_is_active_and_id_aliases():
    row = _row(active=None)
    del row['rule_id'], row['active']
    row['id'] = 'ALIAS'
    row['is_active'] = 'false'
    rule, errors, _ = parse_rule(row, 2)
    assert errors == []
    assert rule.rule_id == 'ALIAS'
    assert rule.active is False


def test_parse_bool():
    assert parse_bool('TRUE') and parse_bool('1') and parse_bool('yes')
    assert not parse_bool('') and not parse_bool('no') and not parse_bool(None)


def test_parse_rows_keeps_good_rows():
    rules, errors = parse_rows([_row(), _row(rule_id='R2', rule_type='bogus'), _row(rule_id='R3')])
    assert [r.rule_id for r in rules] == ['R1', 'R3']
    assert len(errors) == 1 and errors[0].startswith("Line 3:")


def test_write_then_load_preserves_fields(tmp_path):
    rule, _, _ = parse_rule(_row(min_order_amount='5', max_order_amount='100.25',
                                 record_id='rec9', notes='promo'), 2)
    path = tmp_path / 'rules.csv'
    write_rules_csv(path, [rule])

    loaded, errors = load_rules_csv(path)
    assert errors == []
    assert loaded == [rule]
    assert rule_to_row(rule)['max_order_amount'] == '100.25'


def test_load_skips_blank_lines(tmp_path):
    path = tmp_path / 'rules.csv'
    path.write_text(
        "rule_id,rule_type,target_id,markup_type,markup_value,priority\n"
        "D,default,,percent,300,99\n"
        ",,,,,\n"
        "JP,country,jp,fixed,5,1\n",
        encoding='utf-8',
    )
    rules, errors = load_rules_csv(path)
    assert errors == []
    assert [r.rule_id for r in rules] == ['D', 'JP']
    assert all(r.active for r in rules), "Rows without an active column are active"


def test_priority_must_be_a_whole_number():
    for bad in ('inf', '-inf', 'nan', '1.7', '1e400', 'high'):
        rule, errors, _ = parse_rule(_row(priority=bad), 4)
        assert rule is None, f"priority {bad!r} should be rejected"
        assert errors == ["Line 4: priority must be an integer"]

    rule, errors, _ = parse_rule(_row(priority='10.0'), 4)
    assert errors == [] and rule.priority == 10


def test_infinite_priority_row_does_not_break_the_table(tmp_path):
    path = tmp_path / 'rules.csv'
    path.write_text(
        "rule_id,rule_type,target_id,markup_type,markup_value,priority,active\n"
        "D,default,,percent,300,inf,true\n"
        "JP,country,JP,fixed,5,1,true\n",
        encoding='utf-8',
    )
    rules, errors = load_rules_csv(path)
    assert [r.rule_id for r in rules] == ['JP']
    assert errors == ["Line 2: priority must be an integer"]
