"""
Rules API - FastAPI router for rule management.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.errors import BadRequestError, NotFoundError
from ..engine.models import MarkupType, PricingContext, PricingRule, RuleType
from ..engine.rule_matcher import candidates, select_rule, specificity
from ..services.rules_service import RuleValidationError
from .auth import require_admin
from .state import AppState, get_state

router = APIRouter(prefix="/api/rules", tags=["rules"], dependencies=[Depends(require_admin)])


# Pydantic models for API
class RuleCreate(BaseModel):
    """Request model for creating a rule."""
    rule_id: Optional[str] = None
    rule_type: RuleType
    target_id: Optional[str] = None
    agent_filter: Optional[str] = None
    markup_type: MarkupType
    markup_value: float
    min_order_amount: Optional[float] = None
    max_order_amount: Optional[float] = None
    active: bool = True
    priority: int = 50
    notes: Optional[str] = None

    def to_rule(self) -> PricingRule:
        data = self.model_dump()
        data['rule_id'] = data['rule_id'] or ''
        return PricingRule(**data)


class RuleUpdate(BaseModel):
    """Request model for updating a rule."""
    rule_type: Optional[RuleType] = None
    target_id: Optional[str] = None
    agent_filter: Optional[str] = None
    markup_type: Optional[MarkupType] = None
    markup_value: Optional[float] = None
    min_order_amount: Optional[float] = None
    max_order_amount: Optional[float] = None
    active: Optional[bool] = None
    priority: Optional[int] = None
    notes: Optional[str] = None


class RuleResponse(BaseModel):
    """Response model for a rule."""
    rule_id: str
    rule_type: RuleType
    target_id: Optional[str]
    agent_filter: Optional[str]
    markup_type: MarkupType
    markup_value: float
    min_order_amount: Optional[float]
    max_order_amount: Optional[float]
    active: bool
    priority: int
    record_id: Optional[str]
    notes: Optional[str]


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool
    errors: list[str]
    warnings: list[str]


class TestRuleRequest(BaseModel):
    """Request model for testing rules against a context."""
    wholesale_price: float
    agent_id: Optional[str] = None
    country_code: Optional[str] = None
    plan_id: Optional[str] = None
    supplier_plan_id: Optional[str] = None


class TestRuleResponse(BaseModel):
    """Response model for rule test."""
    matched_rules: list[dict]
    selected_rule_id: Optional[str]
    retail_price: float
    source: str
    trace: list[dict]


class SyncRecord(BaseModel):
    record_id: str
    agent_id: Optional[str] = None
    plan_id: Optional[str] = None
    supplier_plan_id: Optional[str] = None
    final_price: Optional[float] = None


class SyncRequest(BaseModel):
    rules: list[SyncRecord] = []
    deleted_records: list[str] = []


def _response(rule: PricingRule) -> RuleResponse:
    return RuleResponse(**rule.__dict__)


# Endpoints

@router.get("", response_model=list[RuleResponse])
async def list_rules(include_inactive: bool = True, state: AppState = Depends(get_state)):
    """List all pricing rules."""
    rules = state.rules_service.list_rules(include_inactive=include_inactive)
    return [_response(rule) for rule in rules]


@router.get("/stats")
async def get_stats(state: AppState = Depends(get_state)):
    """Get rule statistics."""
    return state.rules_service.get_stats()


@router.post("/refresh")
async def refresh_rules(state: AppState = Depends(get_state)):
    """Re-read the full rule table (upstream change notification)."""
    rules = state.rule_repository.refresh()
    return {
        "success": state.rule_repository.loaded,
        "rules_count": len(rules),
        "errors": state.rule_repository.last_errors,
    }


@router.post("/validate", response_model=ValidationResponse)
async def validate_rule(rule_data: RuleCreate, state: AppState = Depends(get_state)):
    """Validate a rule without saving."""
    result = state.rules_service.validate_rule(rule_data.to_rule())
    return ValidationResponse(valid=result.valid, errors=result.errors, warnings=result.warnings)


@router.post("/test", response_model=TestRuleResponse)
async def test_rules(request: TestRuleRequest, state: AppState = Depends(get_state)):
    """Show which rules match a context and the price the engine would return."""
    ctx = PricingContext(**request.model_dump())
    matched = candidates(state.rule_repository.list_active_rules(), ctx)
    selected = select_rule(matched, ctx)
    result = state.engine.explain_price(ctx)

    return TestRuleResponse(
        matched_rules=[
            {
                "rule_id": r.rule_id,
                "rule_type": r.rule_type.value,
                "priority": r.priority,
                "specificity": specificity(r, ctx),
                "markup_type": r.markup_type.value,
                "markup_value": r.markup_value,
            }
            for r in matched
        ],
        selected_rule_id=selected.rule_id if selected else None,
        retail_price=result.retail_price,
        source=result.source.value,
        trace=[t.__dict__ for t in result.trace],
    )


@router.post("/sync")
async def sync_rules(request: SyncRequest, state: AppState = Depends(get_state)):
    """Apply an external agent price sheet as plan rules."""
    results = state.rules_service.sync_agent_prices(
        [r.model_dump() for r in request.rules],
        request.deleted_records,
    )
    return {
        "success": True,
        "results": [r.__dict__ for r in results],
        "processed_count": len(results),
    }


@router.post("/backfill")
async def backfill_rules(state: AppState = Depends(get_state)):
    """Retarget plan rules from supplier plan codes to catalog plan ids."""
    return {"updated": state.rules_service.backfill_plan_targets()}


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(rule_id: str, state: AppState = Depends(get_state)):
    """Get a single rule by ID."""
    rule = state.rules_service.get_rule(rule_id)
    if not rule:
        raise NotFoundError(message=f"Rule '{rule_id}' not found")
    return _response(rule)


@router.post("", response_model=RuleResponse)
async def create_rule(rule_data: RuleCreate, state: AppState = Depends(get_state)):
    """Create a new pricing rule."""
    rule = rule_data.to_rule()

    validation = state.rules_service.validate_rule(rule)
    if not validation.valid:
        raise BadRequestError(code="invalid_rule", message="Rule failed validation",
                              details={"errors": validation.errors})

    try:
        created = state.rules_service.create_rule(rule)
    except ValueError as e:
        raise BadRequestError(code="duplicate_rule", message=str(e))
    return _response(created)


@router.put("/{rule_id}", response_model=RuleResponse)
async def update_rule(rule_id: str, updates: RuleUpdate, state: AppState = Depends(get_state)):
    """Update an existing rule."""
    # Only fields present in the body are applied, including explicit nulls
    update_dict = updates.model_dump(exclude_unset=True)

    try:
        updated = state.rules_service.update_rule(rule_id, update_dict)
    except RuleValidationError as e:
        raise BadRequestError(code="invalid_rule", message="Rule failed validation",
                              details={"errors": e.errors})
    except ValueError as e:
        raise NotFoundError(message=str(e))
    return _response(updated)


@router.delete("/{rule_id}")
async def delete_rule(rule_id: str, state: AppState = Depends(get_state)):
    """Delete a rule."""
    try:
        state.rules_service.delete_rule(rule_id)
    except ValueError as e:
        raise NotFoundError(message=str(e))
    return {"success": True, "message": f"Rule '{rule_id}' deleted"}
