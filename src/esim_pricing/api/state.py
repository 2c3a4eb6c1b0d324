"""
Shared API state - one engine and its stores per process.

Each process keeps its own copy of the rule set; refreshes are triggered by
the rules endpoints (or an upstream change notification calling refresh()).
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..config.settings import Settings, get_settings
from ..data.catalog import AgentDirectory, PlanCatalog
from ..engine.override_store import CsvOverrideStore
from ..engine.pricing_engine import PricingEngine
from ..engine.rule_store import CsvRuleRepository
from ..services.import_service import OverrideImportService
from ..services.rules_service import RulesService

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    settings: Settings
    rule_repository: object
    override_store: object
    catalog: PlanCatalog
    agents: AgentDirectory
    engine: PricingEngine
    rules_service: RulesService
    import_service: OverrideImportService


def build_state(settings: Optional[Settings] = None) -> AppState:
    """Load every table named in settings and wire the services together."""
    settings = settings or get_settings()

    rule_repository = CsvRuleRepository(settings.rules_csv)
    override_store = CsvOverrideStore(settings.overrides_csv)
    catalog = PlanCatalog.from_csv(settings.plans_csv)
    agents = AgentDirectory.from_csv(settings.agents_csv)

    engine = PricingEngine(rule_repository, override_store, catalog, agents, settings)
    rules_service = RulesService(settings.rules_csv, rule_repository, catalog, override_store)
    import_service = OverrideImportService(
        override_store, catalog,
        min_margin=settings.min_margin,
        batch_size=settings.import_batch_size,
        error_sample=settings.import_error_sample,
    )

    logger.info(
        "state: %d active rules, %d overrides, %d plans, %d agents",
        len(rule_repository.list_active_rules()), override_store.count(), len(catalog), len(agents),
    )
    return AppState(
        settings=settings,
        rule_repository=rule_repository,
        override_store=override_store,
        catalog=catalog,
        agents=agents,
        engine=engine,
        rules_service=rules_service,
        import_service=import_service,
    )


_state: Optional[AppState] = None


def get_state() -> AppState:
    """FastAPI dependency returning the process-wide state."""
    global _state
    if _state is None:
        _state = build_state()
    return _state
