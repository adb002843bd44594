"""
Recommendation Router.
Exposes the reading-session pipeline to the presentation layer.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
import logging

from fertisense.config import FERTISENSE_API_BASE_URL, FERTISENSE_API_TOKEN
from fertisense.database import SessionLocal
from fertisense.schemas.recommendation_schemas import (
    FertilizerGradeResponse,
    HistoryResponse,
    RecommendationRequest,
    RecommendationResponse,
    SelectPlanRequest,
    SessionResponse,
)
from fertisense.services.api_client import FertisenseApiClient
from fertisense.services.fertilizer_grades import list_grades
from fertisense.services.price_catalog import PriceCatalogAdapter
from fertisense.services.reading_aggregator import SpotSample
from fertisense.services.recommendation_engine import (
    RecommendationEngine,
    RecommendationStatus,
    generate_report,
)
from fertisense.services.recommendation_errors import (
    ConfigurationError,
    InputError,
    NotFoundError,
    SessionInvalidError,
)
from fertisense.services.remote_session_log import RemoteSessionLog
from fertisense.services.requirement_resolver import FarmSelection
from fertisense.services.session_store import SessionRecord, SessionStore, SqlAlchemyKeyValueStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/recommendations", tags=["recommendations"])

_engine: Optional[RecommendationEngine] = None
_session_store: Optional[SessionStore] = None


def get_engine() -> RecommendationEngine:
    global _engine
    if _engine is None:
        client = FertisenseApiClient() if FERTISENSE_API_BASE_URL else None
        _engine = RecommendationEngine(
            price_adapter=PriceCatalogAdapter(client),
            api_client=client if FERTISENSE_API_TOKEN else None,
        )
    return _engine


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        client = FertisenseApiClient() if FERTISENSE_API_BASE_URL and FERTISENSE_API_TOKEN else None
        _session_store = SessionStore(
            kv_store=SqlAlchemyKeyValueStore(SessionLocal),
            remote_log=RemoteSessionLog(client),
        )
    return _session_store


def _session_response(record: SessionRecord) -> SessionResponse:
    return SessionResponse(
        farmer_identity=record.farmer_identity,
        session_key=record.session_key,
        sync_state=record.sync_state.value,
        remote_synced=record.remote_synced,
        selected_plan_id=record.selected_plan_id,
        plans=[p.to_dict() for p in record.plans],
    )


@router.post("", response_model=RecommendationResponse)
async def create_recommendation(
    request: RecommendationRequest,
    engine: RecommendationEngine = Depends(get_engine),
    store: SessionStore = Depends(get_session_store),
):
    """Aggregate samples, build plans, commit the session and sync it once."""
    samples = [SpotSample(**s.model_dump()) for s in request.samples]
    selection = FarmSelection(
        variety=request.selection.variety,
        soil_class=request.selection.soil_class,
        season=request.selection.season,
    )

    try:
        recommendation = await engine.recommend_from_samples(
            samples,
            selection,
            area_ha=request.area_ha,
            rule_set_id=request.rule_set,
            captured_at=request.captured_at,
        )
    except SessionInvalidError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConfigurationError as e:
        logger.error(f"Configuration error building recommendation: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if recommendation.status == RecommendationStatus.SESSION_INVALID:
        raise HTTPException(status_code=422, detail="; ".join(recommendation.warnings))

    record = await store.commit(recommendation.reading, selection, request.farmer_identity, recommendation)
    sync_state = await store.try_sync_once(record)
    recommendation = record.recommendation or recommendation

    payload = recommendation.to_dict()
    return RecommendationResponse(
        status=payload["status"],
        farmer_identity=record.farmer_identity,
        session_key=record.session_key,
        sync_state=sync_state.value,
        remote_synced=record.remote_synced,
        rule_set_id=payload["ruleSetId"],
        reading=payload["reading"],
        levels=payload["levels"],
        nutrient_class=payload["nutrientClass"],
        requirement=payload["requirement"],
        plans=payload["plans"],
        selected_plan_id=record.selected_plan_id,
        warnings=payload["warnings"],
    )


@router.get("/grades", response_model=List[FertilizerGradeResponse])
async def get_grades(include_organic: bool = True):
    return [FertilizerGradeResponse.model_validate(g) for g in list_grades(include_organic)]


@router.post("/{farmer_identity}/select", response_model=SessionResponse)
async def select_session_plan(
    farmer_identity: str,
    request: SelectPlanRequest,
    store: SessionStore = Depends(get_session_store),
):
    try:
        record = await store.select_plan(farmer_identity, request.plan_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _session_response(record)


@router.get("/{farmer_identity}/report")
async def get_session_report(
    farmer_identity: str,
    plan_id: Optional[str] = None,
    store: SessionStore = Depends(get_session_store),
):
    record = await store.load_current(farmer_identity)
    if record is None or record.recommendation is None:
        raise HTTPException(status_code=404, detail=f"No reading session for {farmer_identity}")
    try:
        return generate_report(
            record.recommendation,
            plan_id or record.selected_plan_id,
            farmer_identity=farmer_identity,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{farmer_identity}/history", response_model=HistoryResponse)
async def get_session_history(
    farmer_identity: str,
    store: SessionStore = Depends(get_session_store),
):
    entries = await store.history(farmer_identity)
    return HistoryResponse(farmer_identity=farmer_identity, entries=entries, total=len(entries))
