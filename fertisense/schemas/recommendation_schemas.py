"""
Pydantic schemas for the recommendation API.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from fertisense.config import DEFAULT_RULE_SET
from fertisense.services.recommendation_rules import Season, SoilClass, Variety
from fertisense.services.rule_sets import RuleSetId


# ==================== REQUESTS ====================

class SpotSampleIn(BaseModel):
    """One probe insertion as reported by the sensor."""
    n: Optional[float] = Field(None, description="Nitrogen ppm")
    p: Optional[float] = Field(None, description="Phosphorus ppm")
    k: Optional[float] = Field(None, description="Potassium ppm")
    ph: Optional[float] = Field(None, description="pH value")
    ok: Optional[bool] = Field(None, description="Sensor self-check flag")
    error: Optional[str] = Field(None, max_length=500)


class FarmSelectionIn(BaseModel):
    variety: Variety = Variety.HYBRID
    soil_class: SoilClass = SoilClass.LIGHT
    season: Season = Season.WET


class RecommendationRequest(BaseModel):
    farmer_identity: str = Field(..., min_length=1, max_length=100, description="Farmer id or local user id")
    samples: List[SpotSampleIn] = Field(..., min_length=1, max_length=50)
    selection: FarmSelectionIn = Field(default_factory=FarmSelectionIn)
    area_ha: float = Field(default=1.0, gt=0, le=1000, description="Farm area in hectares")
    rule_set: RuleSetId = Field(default=RuleSetId(DEFAULT_RULE_SET), description="Rule set id")
    captured_at: Optional[datetime] = None


class SelectPlanRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)


# ==================== RESPONSES ====================

class RecommendationResponse(BaseModel):
    status: str
    farmer_identity: str
    session_key: Optional[str] = None
    sync_state: Optional[str] = None
    remote_synced: bool = False
    rule_set_id: str
    reading: Optional[Dict[str, Any]] = None
    levels: Dict[str, str] = {}
    nutrient_class: str
    requirement: Optional[Dict[str, float]] = None
    plans: List[Dict[str, Any]] = []
    selected_plan_id: Optional[str] = None
    warnings: List[str] = []


class SessionResponse(BaseModel):
    farmer_identity: str
    session_key: str
    sync_state: str
    remote_synced: bool
    selected_plan_id: Optional[str] = None
    plans: List[Dict[str, Any]] = []


class HistoryResponse(BaseModel):
    farmer_identity: str
    entries: List[Dict[str, Any]]
    total: int


class FertilizerGradeResponse(BaseModel):
    code: str
    label: str
    dash_code: str
    nitrogen_pct: float
    phosphorus_pct: float
    potassium_pct: float
    bag_mass_kg: float
    is_organic: bool

    class Config:
        from_attributes = True
