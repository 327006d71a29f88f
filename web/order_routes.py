"""
Order Routes - JSON API for the Valuation Pipeline

Thin request/response layer over ValuationPipeline. Request bodies use
pydantic models; records are converted with the models' from_dict and
results returned with to_dict. Pipeline errors are mapped to status codes
by the handlers registered in web.app.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from valuation import ValuationPipeline
from valuation.adjustments import EngineSettings
from valuation.comp_engine import (
    CompProperty,
    CompSelection,
    HiLoSettings,
    MarketBasis,
    SubjectProperty,
    TimeAdjustments,
)
from valuation.defaults import DEFAULT_HILO_SETTINGS, WEIGHT_PROFILES


# =============================================================================
# Router Setup
# =============================================================================

router = APIRouter(prefix="/api", tags=["valuation"])


def get_pipeline(request: Request) -> ValuationPipeline:
    """The pipeline instance owned by the application."""
    return request.app.state.pipeline


def parse_record(factory, data: Any, kind: str):
    """
    Build a record from request JSON.

    Raises:
        HTTPException(400) if required fields are missing or malformed
    """
    try:
        return factory(data)
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid {kind}: {e}")


# =============================================================================
# Request Models
# =============================================================================


class LoadOrderRequest(BaseModel):
    """Subject, candidate pool and optional order settings."""
    subject: dict
    comps: list[dict]
    polygon: Optional[dict] = None
    weights: Optional[dict] = None
    constraints: Optional[dict] = None
    selection: Optional[dict] = None
    time_adjustments: Optional[dict] = None
    hilo_settings: Optional[dict] = None
    engine_settings: Optional[dict] = None
    updated_by: str = "system"


class WeightsRequest(BaseModel):
    weights: dict
    constraints: dict
    updated_by: str = "user"


class ProfileRequest(BaseModel):
    profile_id: str
    updated_by: str = "user"


class LockRequest(BaseModel):
    comp_id: str
    locked: bool = True


class SelectionRequest(BaseModel):
    restrict_to_polygon: Optional[bool] = None
    primary: Optional[list[str]] = None
    locked: Optional[list[str]] = None


class SwapRequest(BaseModel):
    candidate_id: str
    target_index: int
    confirm: bool = False


class TimeAdjustmentsRequest(BaseModel):
    basis: str
    pct_per_month: float
    effective_date: str


class MarketTrendRequest(BaseModel):
    records: list[dict]
    effective_date: str
    basis: Optional[str] = None
    months_back: int = 12
    min_sales_per_month: int = 3


class HiLoRequest(BaseModel):
    settings: Optional[dict] = None
    apply_primaries: bool = True


class AdjustmentsRequest(BaseModel):
    comp_ids: Optional[list[str]] = None
    settings: Optional[dict] = None


class OverrideRequest(BaseModel):
    value: float
    note: Optional[str] = None
    run_id: Optional[str] = None


class ApplyRequest(BaseModel):
    run_id: Optional[str] = None
    override_notes: Optional[str] = None


# =============================================================================
# Profiles & Orders
# =============================================================================


@router.get("/profiles")
def list_profiles():
    """Read-only shop weight profiles."""
    return {"profiles": [profile.to_dict() for profile in WEIGHT_PROFILES]}


@router.put("/orders/{order_id}")
def load_order(
    order_id: str,
    body: LoadOrderRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    """Create or replace an order."""
    subject = parse_record(SubjectProperty.from_dict, body.subject, "subject")
    comps = [parse_record(CompProperty.from_dict, comp, "comp") for comp in body.comps]

    selection = None
    if body.selection is not None:
        selection = parse_record(
            CompSelection.from_dict, {"orderId": order_id, **body.selection}, "selection"
        )
    time_adjustments = None
    if body.time_adjustments is not None:
        time_adjustments = parse_record(
            TimeAdjustments.from_dict, body.time_adjustments, "time adjustments"
        )
    hilo_settings = None
    if body.hilo_settings is not None:
        hilo_settings = parse_record(
            lambda data: HiLoSettings.from_dict(data, DEFAULT_HILO_SETTINGS),
            body.hilo_settings,
            "bracket settings",
        )
    engine_settings = None
    if body.engine_settings is not None:
        engine_settings = parse_record(
            EngineSettings.from_dict, body.engine_settings, "engine settings"
        )

    state = pipeline.load_order(
        order_id,
        subject,
        comps,
        polygon=body.polygon,
        weights=body.weights,
        constraints=body.constraints,
        selection=selection,
        time_adjustments=time_adjustments,
        hilo_settings=hilo_settings,
        engine_settings=engine_settings,
        updated_by=body.updated_by,
    )
    return state.to_dict()


@router.get("/orders/{order_id}")
def get_order(order_id: str, pipeline: ValuationPipeline = Depends(get_pipeline)):
    return pipeline.get_order(order_id).to_dict()


@router.put("/orders/{order_id}/weights")
def update_weights(
    order_id: str,
    body: WeightsRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    return pipeline.update_weights(
        order_id, body.weights, body.constraints, updated_by=body.updated_by
    ).to_dict()


@router.post("/orders/{order_id}/profile")
def apply_profile(
    order_id: str,
    body: ProfileRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    return pipeline.apply_profile(
        order_id, body.profile_id, updated_by=body.updated_by
    ).to_dict()


@router.get("/orders/{order_id}/comps")
def rank_comps(order_id: str, pipeline: ValuationPipeline = Depends(get_pipeline)):
    """Scored candidate pool in rank order."""
    return {"comps": [comp.to_dict() for comp in pipeline.rank_comps(order_id)]}


# =============================================================================
# Selection
# =============================================================================


@router.post("/orders/{order_id}/lock")
def lock_comp(
    order_id: str,
    body: LockRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    return pipeline.lock(order_id, body.comp_id, body.locked).to_dict()


@router.patch("/orders/{order_id}/selection")
def update_selection(
    order_id: str,
    body: SelectionRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    return pipeline.update_selection(
        order_id,
        restrict_to_polygon=body.restrict_to_polygon,
        primary=body.primary,
        locked=body.locked,
    ).to_dict()


@router.post("/orders/{order_id}/swap")
def swap(
    order_id: str,
    body: SwapRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    """Promote a candidate; 409 when the slot is locked and not confirmed."""
    return pipeline.swap(
        order_id, body.candidate_id, body.target_index, confirm=body.confirm
    ).to_dict()


# =============================================================================
# Time Adjustments & Bracket
# =============================================================================


@router.put("/orders/{order_id}/time-adjustments")
def set_time_adjustments(
    order_id: str,
    body: TimeAdjustmentsRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    time_adjustments = parse_record(
        TimeAdjustments.from_dict,
        {
            "basis": body.basis,
            "pctPerMonth": body.pct_per_month,
            "effectiveDateISO": body.effective_date,
        },
        "time adjustments",
    )
    return pipeline.set_time_adjustments(order_id, time_adjustments).to_dict()


@router.post("/orders/{order_id}/market-trend")
def derive_market_trend(
    order_id: str,
    body: MarketTrendRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    """Fit the monthly rate from supplied sale records."""
    options: dict[str, Any] = {
        "months_back": body.months_back,
        "min_sales_per_month": body.min_sales_per_month,
    }
    if body.basis is not None:
        options["basis"] = parse_record(MarketBasis, body.basis, "basis")
    return pipeline.derive_time_adjustments(
        order_id, body.records, body.effective_date, **options
    ).to_dict()


@router.post("/orders/{order_id}/hilo")
def compute_hilo(
    order_id: str,
    body: HiLoRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    settings = None
    if body.settings is not None:
        current = pipeline.get_order(order_id).hilo.settings
        settings = parse_record(
            lambda data: HiLoSettings.from_dict(data, current),
            body.settings,
            "bracket settings",
        )
    return pipeline.compute_hilo(
        order_id, settings=settings, apply_primaries=body.apply_primaries
    ).to_dict()


# =============================================================================
# Adjustments
# =============================================================================


@router.post("/orders/{order_id}/adjustments")
def compute_adjustments(
    order_id: str,
    body: AdjustmentsRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    settings = None
    if body.settings is not None:
        settings = parse_record(EngineSettings.from_dict, body.settings, "engine settings")
    return pipeline.compute_adjustments(
        order_id, comp_ids=body.comp_ids, settings=settings
    ).to_dict()


@router.put("/orders/{order_id}/adjustments/overrides/{key}")
def override_adjustment(
    order_id: str,
    key: str,
    body: OverrideRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    return pipeline.override_adjustment(
        order_id, key, body.value, note=body.note, run_id=body.run_id
    ).to_dict()


@router.delete("/orders/{order_id}/adjustments/overrides/{key}")
def clear_override(
    order_id: str,
    key: str,
    run_id: Optional[str] = None,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    return pipeline.clear_override(order_id, key, run_id=run_id).to_dict()


@router.post("/orders/{order_id}/apply")
def apply_adjustments(
    order_id: str,
    body: ApplyRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    """Indicated values, reconciliation and fingerprint for a run."""
    return pipeline.apply_adjustments(
        order_id, run_id=body.run_id, override_notes=body.override_notes
    ).to_dict()
