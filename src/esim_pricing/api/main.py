from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import BadRequestError, register_exception_handlers
from ..core.logging import init_logging
from ..engine.models import PricingContext
from .auth import Caller, ensure_agent_access, get_caller
from .overrides_api import router as overrides_router
from .rules_api import router as rules_router
from .state import AppState, get_state

init_logging(root_level="INFO", third_party_level="WARNING")

app = FastAPI(
    title="eSIM Pricing API",
    description="Retail price resolution for travel-agent eSIM plans",
    version="1.0.0"
)

# Enable CORS for the storefront
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(rules_router)
app.include_router(overrides_router)


class CalcRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wholesale_price: float = Field(alias="wholesalePrice", ge=0)
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    plan_id: Optional[str] = Field(default=None, alias="planId")
    supplier_plan_id: Optional[str] = Field(default=None, alias="supplierPlanId")


class BatchPriceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(alias="agentId")
    plan_ids: list[str] = Field(alias="planIds")


@app.get("/")
async def root():
    return {"status": "online", "message": "eSIM Pricing API Active"}


@app.post("/calculate")
async def calculate_price(req: CalcRequest, state: AppState = Depends(get_state)):
    ctx = PricingContext(
        wholesale_price=req.wholesale_price,
        agent_id=req.agent_id,
        country_code=req.country_code,
        plan_id=req.plan_id,
        supplier_plan_id=req.supplier_plan_id,
    )
    result = state.engine.explain_price(ctx)
    return jsonable_encoder(result)


@app.post("/prices")
async def batch_prices(
    req: BatchPriceRequest,
    caller: Caller = Depends(get_caller),
    state: AppState = Depends(get_state),
):
    if not req.agent_id.strip():
        raise BadRequestError(message="agentId is required")
    ensure_agent_access(caller, req.agent_id, state)
    return {"prices": state.engine.batch_prices(req.agent_id, req.plan_ids)}


@app.get("/system/status")
async def get_status(state: AppState = Depends(get_state)):
    repo = state.rule_repository
    return {
        "engine_active": True,
        "rules_loaded": repo.loaded,
        "rules_count": len(repo.list_rules()),
        "active_rules_count": len(repo.list_active_rules()),
        "rule_errors": repo.last_errors,
        "overrides_count": state.override_store.count(),
        "catalog_plans": len(state.catalog),
        "catalog_report": state.catalog.report,
    }
