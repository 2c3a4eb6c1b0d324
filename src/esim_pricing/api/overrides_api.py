"""
Agent pricing API - per-agent retail price overrides and bulk CSV import.
"""
from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from ..core.errors import BadRequestError, NotFoundError
from ..services.import_service import template_csv
from .auth import require_admin
from .state import AppState, get_state

router = APIRouter(
    prefix="/api/agents/{agent_id}/pricing",
    tags=["agent-pricing"],
    dependencies=[Depends(require_admin)],
)


class OverrideRequest(BaseModel):
    plan_id: str
    retail_price: float = Field(gt=0)


class OverrideResponse(BaseModel):
    agent_id: str
    plan_id: str
    retail_price: float


@router.get("", response_model=list[OverrideResponse])
async def list_overrides(agent_id: str, state: AppState = Depends(get_state)):
    """List an agent's price overrides."""
    return [OverrideResponse(**o.__dict__) for o in state.override_store.list_for_agent(agent_id)]


@router.get("/template", response_class=PlainTextResponse)
async def download_template(agent_id: str, state: AppState = Depends(get_state)):
    """CSV template with example rows taken from the catalog."""
    plan_ids = [p.plan_id for p in state.catalog.plans()[:2]]
    return PlainTextResponse(
        template_csv(plan_ids),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="pricing-template-{agent_id}.csv"'},
    )


@router.put("", response_model=OverrideResponse)
async def upsert_override(agent_id: str, req: OverrideRequest, state: AppState = Depends(get_state)):
    """Set one plan price for the agent."""
    try:
        record = state.import_service.upsert_override(agent_id, req.plan_id.strip(), req.retail_price)
    except ValueError as e:
        raise BadRequestError(code="invalid_price", message=str(e))
    return OverrideResponse(**record.__dict__)


@router.delete("/{plan_id}")
async def delete_override(agent_id: str, plan_id: str, state: AppState = Depends(get_state)):
    """Remove one plan price for the agent."""
    if not state.import_service.delete_override(agent_id, plan_id):
        raise NotFoundError(message=f"No override for plan '{plan_id}'")
    return {"success": True}


@router.post("/import")
async def import_overrides(
    agent_id: str,
    file: UploadFile = File(...),
    state: AppState = Depends(get_state),
):
    """Replace all of the agent's overrides with the rows of an uploaded CSV."""
    if file.filename and not file.filename.lower().endswith('.csv'):
        raise BadRequestError(code="invalid_file", message="Only .csv files are accepted")

    content = await file.read()
    report = state.import_service.import_csv(agent_id, content)

    if not report.valid:
        raise BadRequestError(
            code="no_valid_rows",
            message="No valid rows to import",
            details=report.summary(),
        )
    return {"success": True, **report.summary()}
