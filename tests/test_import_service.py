"""
Tests for agent price sheet validation and replace-all import.
"""
from decimal import Decimal

import pytest

from conftest import PLAN_JP, PLAN_TH

from esim_pricing.engine.models import AgentPricingOverride
from esim_pricing.engine.override_store import InMemoryOverrideStore
from esim_pricing.services.import_service import (
    OverrideImportService, extract_plan_id, parse_price, read_import_csv, template_csv, validate_batch,
)

KNOWN = {PLAN_JP: 10.0, PLAN_TH: 20.0}


def _rows(*pairs):
    return [{'plan_id': p, 'retail_price': v} for p, v in pairs]


class TestMinimumMargin:

    def test_exactly_minimum_is_accepted(self):
        report = validate_batch(_rows((PLAN_JP, '10.50')), KNOWN, 'A1')
        assert report.errors == []
        assert [r.retail_price for r in report.valid] == [10.5]

    def test_exact_minimum_on_awkward_wholesale(self):
        known = {PLAN_JP: 19.99}
        report = validate_batch(_rows((PLAN_JP, '20.9895')), known, 'A1')
        assert report.errors == [], "wholesale x 1.05 exactly must not be rejected by float error"

    def test_below_minimum_is_rejected(self):
        report = validate_batch(_rows((PLAN_JP, '10.49')), KNOWN, 'A1')
        assert report.valid == []
        assert report.errors == ["Row 2: Price $10.49 below minimum $10.50"]


def test_last_duplicate_wins():
    report = validate_batch(_rows((PLAN_JP, '15'), (PLAN_TH, '30'), (PLAN_JP, '18')), KNOWN, 'A1')
    assert report.duplicates == 1
    by_plan = {r.plan_id: r.retail_price for r in report.valid}
    assert by_plan == {PLAN_JP: 18.0, PLAN_TH: 30.0}


def test_sheet_error_cells_are_skipped_not_reported():
    report = validate_batch(_rows((PLAN_JP, '#N/A'), ('#REF!', '20'), (PLAN_TH, 'abc')), KNOWN, 'A1')
    assert report.skipped_sentinels == 2
    assert report.errors == ['Row 4: Invalid retail_price "abc"']
    assert report.skipped == 1


@pytest.mark.parametrize("rows, message", [
    (_rows(('', '12')), "Row 2: Missing plan_id or retail_price"),
    (_rows((PLAN_JP, '')), "Row 2: Missing plan_id or retail_price"),
    (_rows(('not-a-plan', '12')), 'Row 2: Invalid plan_id "not-a-plan"'),
    (_rows((PLAN_JP, '0')), 'Row 2: Invalid retail_price "0"'),
    (_rows((PLAN_JP, '-5')), 'Row 2: Invalid retail_price "-5"'),
])
def test_row_errors(rows, message):
    report = validate_batch(rows, KNOWN, 'A1')
    assert report.valid == []
    assert report.errors == [message]


def test_extract_plan_id():
    assert extract_plan_id(f"Japan 5GB ({PLAN_JP})") == PLAN_JP
    assert extract_plan_id(f"#{PLAN_JP}") == PLAN_JP
    assert extract_plan_id("#plan-7") == "plan-7"


def test_parse_price_strips_currency_and_separators():
    assert parse_price("$1,234.50") == Decimal("1234.50")
    assert parse_price("€ 12") == Decimal("12")
    assert parse_price("USD 9.99") == Decimal("9.99")
    assert parse_price("abc") is None
    assert parse_price("") is None


def test_headers_are_normalised():
    rows = [{' Plan ID ': PLAN_JP, 'Retail Price': '$12.00'}]
    report = validate_batch(rows, KNOWN, 'A1')
    assert report.errors == []
    assert report.valid == [AgentPricingOverride('A1', PLAN_JP, 12.0)]


def test_read_import_csv_keeps_text_and_drops_blank_lines():
    content = f"Plan ID,Retail Price\n#{PLAN_JP},\"$1,050.00\"\n\n{PLAN_TH},#N/A\n".encode()
    rows = read_import_csv(content)
    assert rows == [
        {'plan_id': f"#{PLAN_JP}", 'retail_price': "$1,050.00"},
        {'plan_id': PLAN_TH, 'retail_price': "#N/A"},
    ]


def test_read_import_csv_empty():
    assert read_import_csv(b"") == []


def test_template_lists_catalog_plans():
    text = template_csv([PLAN_JP])
    assert text.startswith("plan_id,retail_price\n")
    assert PLAN_JP in text


class TestOverrideImportService:

    @pytest.fixture
    def store(self):
        return InMemoryOverrideStore([
            AgentPricingOverride('A1', PLAN_JP, 50.0),
            AgentPricingOverride('B2', PLAN_JP, 60.0),
        ])

    def test_import_replaces_only_that_agents_overrides(self, store, catalog):
        service = OverrideImportService(store, catalog)
        report = service.import_csv('A1', f"plan_id,retail_price\n{PLAN_TH},25\n".encode())

        assert report.inserted == 1
        assert store.list_for_agent('A1') == [AgentPricingOverride('A1', PLAN_TH, 25.0)]
        assert store.resolve('B2', PLAN_JP) == 60.0

    def test_import_without_valid_rows_keeps_existing(self, store, catalog):
        service = OverrideImportService(store, catalog)
        report = service.import_csv('A1', f"plan_id,retail_price\n{PLAN_TH},1\n".encode())

        assert report.inserted == 0
        assert len(report.errors) == 1
        assert store.resolve('A1', PLAN_JP) == 50.0

    def test_bulk_replace_inserts_in_batches(self, catalog):
        calls = []

        class RecordingStore(InMemoryOverrideStore):
            def insert_batch(self, records):
                calls.append(len(records))
                return super().insert_batch(records)

        service = OverrideImportService(RecordingStore(), catalog, batch_size=2)
        records = [AgentPricingOverride('A1', f'p{i}', 10.0) for i in range(5)]
        assert service.bulk_replace('A1', records) == 5
        assert calls == [2, 2, 1]

    def test_failed_batch_leaves_partial_state(self, catalog):
        class FlakyStore(InMemoryOverrideStore):
            batches = 0

            def insert_batch(self, records):
                FlakyStore.batches += 1
                if FlakyStore.batches == 2:
                    raise ConnectionError("backend unavailable")
                return super().insert_batch(records)

        store = FlakyStore([AgentPricingOverride('A1', 'old', 10.0)])
        service = OverrideImportService(store, catalog, batch_size=1)
        records = [AgentPricingOverride('A1', 'p1', 10.0), AgentPricingOverride('A1', 'p2', 10.0)]

        with pytest.raises(ConnectionError):
            service.bulk_replace('A1', records)
        assert store.list_for_agent('A1') == [AgentPricingOverride('A1', 'p1', 10.0)]

    def test_upsert_checks_margin(self, store, catalog):
        service = OverrideImportService(store, catalog)
        with pytest.raises(ValueError):
            service.upsert_override('A1', PLAN_TH, 20.99)
        with pytest.raises(ValueError):
            service.upsert_override('A1', 'unknown-plan', 100)

        record = service.upsert_override('A1', PLAN_TH, 21)
        assert record.retail_price == 21.0
        assert store.resolve('A1', PLAN_TH) == 21.0


def test_error_sample_size_is_configurable(catalog):
    service = OverrideImportService(InMemoryOverrideStore(), catalog, error_sample=2)
    rows = "\n".join(f"bad-plan-{i},12" for i in range(4))
    report = service.import_csv('A1', f"plan_id,retail_price\n{rows}\n".encode())

    summary = report.summary()
    assert summary['skipped'] == 4
    assert len(summary['error_sample']) == 2
    assert len(report.summary(sample_size=3)['error_sample']) == 3
