"""
Analytics request and response models.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from agapay.models.report import ReportType


class HotspotCriteria(BaseModel):
    type: Optional[ReportType] = None
    city: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class MonthlyCount(BaseModel):
    month: str = Field(..., description="YYYY-MM")
    count: int = 0


class AreaRisk(BaseModel):
    barangay: str
    total_incidents: int
    by_type: Dict[str, int] = Field(default_factory=dict)
    monthly: List[MonthlyCount] = Field(default_factory=list)
    slope: float = 0.0
    trend: str = "Stable"
    predicted_next_month: int = 0
    risk_score: int = 0
    risk_level: str = "Low"


class HotspotReport(BaseModel):
    """
    Ranked barangay risk report.

    The score is a triage heuristic (volume relative to the busiest area,
    nudged by trend), not a statistical forecast.
    """
    generated_at: datetime
    total_reports: int = 0
    areas: List[AreaRisk] = Field(default_factory=list)
