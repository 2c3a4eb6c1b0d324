"""
Agent price import - validates plan_id,retail_price sheets and replaces an
agent's overrides with the result.

A bad row never blocks the rest of the file: row problems are collected as
errors and the valid rows are imported. Spreadsheet error cells (#N/A,
#REF!, ...) are skipped without being reported as errors.
"""
import io
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Optional, Union

import pandas as pd

from ..engine.models import AgentPricingOverride

logger = logging.getLogger(__name__)

EXCEL_ERROR_RE = re.compile(r'^#(N/A|REF!|VALUE!|DIV/0!|NAME\?|NULL!|NUM!)$', re.IGNORECASE)
UUID_SEARCH_RE = re.compile(
    r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', re.IGNORECASE
)
LEADING_SYMBOLS_RE = re.compile(r'^[^\d-]*')

PLAN_ID_KEYS = ('plan_id', 'plan id', 'plan-id')
PRICE_KEYS = ('retail_price', 'retail price', 'retail-price')

DEFAULT_MIN_MARGIN = Decimal('1.05')
DEFAULT_BATCH_SIZE = 500
ERROR_SAMPLE_SIZE = 5


@dataclass
class ImportReport:
    """Result of validating one import file."""
    valid: list[AgentPricingOverride] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped_sentinels: int = 0
    duplicates: int = 0
    total_rows: int = 0
    inserted: int = 0
    error_sample_size: int = ERROR_SAMPLE_SIZE

    @property
    def skipped(self) -> int:
        """Rows dropped because of errors."""
        return len(self.errors)

    def summary(self, sample_size: Optional[int] = None) -> dict:
        if sample_size is None:
            sample_size = self.error_sample_size
        return {
            'total_rows': self.total_rows,
            'valid': len(self.valid),
            'inserted': self.inserted,
            'skipped': self.skipped,
            'skipped_sentinels': self.skipped_sentinels,
            'duplicates': self.duplicates,
            'error_sample': self.errors[:sample_size],
        }


def normalize_header(header) -> str:
    """Trim, lower-case and collapse whitespace to underscores."""
    return re.sub(r'\s+', '_', str(header).strip().lower())


def is_sheet_error(value: str) -> bool:
    return bool(EXCEL_ERROR_RE.match(value or ''))


def extract_plan_id(raw: str) -> str:
    """Prefer a UUID embedded anywhere in the cell, else the cell minus a leading '#'."""
    match = UUID_SEARCH_RE.search(raw)
    if match:
        return match.group(0)
    return re.sub(r'^#', '', raw).strip()


def parse_price(raw: str) -> Optional[Decimal]:
    """Strip thousands separators, leading currency symbols and spaces; None if unparseable."""
    cleaned = raw.replace(',', '')
    cleaned = LEADING_SYMBOLS_RE.sub('', cleaned)
    cleaned = re.sub(r'\s+', '', cleaned)
    # Accept a leading number followed by junk, as a lenient float parse would
    match = re.match(r'^-?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?', cleaned)
    if not match:
        return None
    try:
        value = Decimal(match.group(0))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def _cell(row: Mapping, keys: tuple[str, ...]) -> str:
    normalized = {normalize_header(k): v for k, v in row.items() if k is not None}
    for key in keys:
        value = normalized.get(normalize_header(key))
        if value is not None and not (isinstance(value, float) and pd.isna(value)):
            return str(value).strip()
    return ''


def minimum_price(wholesale_price: float, min_margin: Decimal = DEFAULT_MIN_MARGIN) -> Decimal:
    """Lowest allowed retail price for a plan."""
    return Decimal(str(wholesale_price)) * Decimal(str(min_margin))


def validate_batch(
    rows: list[Mapping],
    known_plans: Mapping[str, float],
    agent_id: str,
    min_margin: Decimal = DEFAULT_MIN_MARGIN,
) -> ImportReport:
    """
    Validate raw import rows against the plan catalog.

    known_plans maps plan_id -> wholesale price. Valid records are
    deduplicated by (agent, plan); the last row for a plan wins.
    """
    report = ImportReport(total_rows=len(rows))
    valid: list[AgentPricingOverride] = []

    for i, row in enumerate(rows):
        row_num = i + 2  # header is line 1

        raw_plan = _cell(row, PLAN_ID_KEYS)
        if is_sheet_error(raw_plan):
            logger.debug("import row %d: skipping spreadsheet error plan_id %r", row_num, raw_plan)
            report.skipped_sentinels += 1
            continue

        raw_price = _cell(row, PRICE_KEYS)
        if is_sheet_error(raw_price):
            logger.debug("import row %d: skipping spreadsheet error price %r", row_num, raw_price)
            report.skipped_sentinels += 1
            continue

        plan_id = extract_plan_id(raw_plan)
        if not plan_id or not raw_price:
            report.errors.append(f"Row {row_num}: Missing plan_id or retail_price")
            continue

        if plan_id not in known_plans:
            report.errors.append(f'Row {row_num}: Invalid plan_id "{raw_plan}"')
            continue

        price = parse_price(raw_price)
        if price is None or price <= 0:
            report.errors.append(f'Row {row_num}: Invalid retail_price "{raw_price}"')
            continue

        min_price = minimum_price(known_plans[plan_id], min_margin)
        if price < min_price:
            report.errors.append(
                f"Row {row_num}: Price ${price:.2f} below minimum ${min_price:.2f}"
            )
            continue

        valid.append(AgentPricingOverride(agent_id=agent_id, plan_id=plan_id, retail_price=float(price)))

    unique: dict[tuple[str, str], AgentPricingOverride] = {}
    for record in valid:
        unique.pop(record.key, None)
        unique[record.key] = record  # last one wins
    report.valid = list(unique.values())
    report.duplicates = len(valid) - len(report.valid)
    return report


def read_import_csv(source: Union[str, Path, bytes, io.IOBase]) -> list[dict]:
    """
    Read an import sheet into raw rows.

    Every cell stays text so spreadsheet error literals survive; headers are
    normalised; blank lines are ignored.
    """
    if isinstance(source, bytes):
        source = io.BytesIO(source)

    try:
        df = pd.read_csv(
            source,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=True,
        )
    except pd.errors.EmptyDataError:
        return []

    df.columns = [normalize_header(c) for c in df.columns]
    df = df.fillna('')
    for col in df.columns:
        df[col] = df[col].astype(str).str.strip()
    df = df[~(df == '').all(axis=1)]
    return df.to_dict(orient='records')


def template_csv(plan_ids: list[str]) -> str:
    """Two-column import template with commented example rows."""
    first = plan_ids[0] if len(plan_ids) > 0 else 'plan-uuid-here'
    second = plan_ids[1] if len(plan_ids) > 1 else 'another-plan-uuid'
    return f"plan_id,retail_price\n# Example rows:\n# {first},50.00\n# {second},75.00\n"


class OverrideImportService:
    """Single-record and bulk writes into the override store."""

    def __init__(self, override_store, catalog, min_margin: float = 1.05,
                 batch_size: int = DEFAULT_BATCH_SIZE, error_sample: int = ERROR_SAMPLE_SIZE):
        self.override_store = override_store
        self.catalog = catalog
        self.min_margin = Decimal(str(min_margin))
        self.batch_size = batch_size
        self.error_sample = error_sample

    def upsert_override(self, agent_id: str, plan_id: str, retail_price: float) -> AgentPricingOverride:
        """
        Set one override after checking the minimum margin.

        Raises ValueError for unknown plans or prices below the minimum.
        """
        wholesale = self.catalog.get_wholesale_price(plan_id)
        if wholesale is None:
            raise ValueError(f"Unknown plan_id '{plan_id}'")

        price = Decimal(str(retail_price))
        min_price = minimum_price(wholesale, self.min_margin)
        if price <= 0 or price < min_price:
            raise ValueError(f"Price ${price:.2f} below minimum ${min_price:.2f}")

        record = self.override_store.upsert(agent_id, plan_id, float(price))
        logger.info("overrides: set agent=%s plan=%s price=%.2f", agent_id, plan_id, record.retail_price)
        return record

    def delete_override(self, agent_id: str, plan_id: str) -> bool:
        return self.override_store.delete(agent_id, plan_id)

    def bulk_replace(self, agent_id: str, records: list[AgentPricingOverride]) -> int:
        """
        Delete all of an agent's overrides, then insert records in batches.

        Not atomic: if a batch insert fails after the delete, the agent is
        left with only the batches written so far.
        """
        removed = self.override_store.delete_all(agent_id)
        inserted = 0
        for start in range(0, len(records), self.batch_size):
            batch = records[start:start + self.batch_size]
            inserted += self.override_store.insert_batch(batch)
        logger.info("overrides: replaced %d with %d for agent %s", removed, inserted, agent_id)
        return inserted

    def import_csv(self, agent_id: str, source) -> ImportReport:
        """Validate an import sheet and replace the agent's overrides with it."""
        rows = read_import_csv(source)
        report = validate_batch(rows, self.catalog.known_plans(), agent_id, self.min_margin)
        report.error_sample_size = self.error_sample

        if report.errors:
            logger.warning(
                "import agent=%s: %d invalid rows skipped. First: %s",
                agent_id, report.skipped, "; ".join(report.errors[:self.error_sample]),
            )
        if report.duplicates:
            logger.info("import agent=%s: %d duplicate plan entries consolidated", agent_id, report.duplicates)

        if not report.valid:
            logger.warning("import agent=%s: no valid rows, existing overrides kept", agent_id)
            return report

        report.inserted = self.bulk_replace(agent_id, report.valid)
        return report
