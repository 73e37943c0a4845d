"""
Analytics endpoints - report overview and barangay hotspots.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from agapay.models.analytics import HotspotCriteria, HotspotReport
from agapay.models.base import DataResponse
from agapay.models.report import ReportType
from agapay.models.user import Principal
from agapay.services.authorization import Capability, requires
from agapay.services.hotspot_analyzer import HotspotAnalyzer, get_hotspot_analyzer

router = APIRouter(prefix="/analytics", tags=["Analytics"])


@router.get("/overview", response_model=DataResponse)
async def overview(
    principal: Principal = Depends(requires(Capability.VIEW_ANALYTICS)),
    analyzer: HotspotAnalyzer = Depends(get_hotspot_analyzer),
):
    return DataResponse(data=analyzer.overview(principal))


@router.get("/hotspots", response_model=HotspotReport)
async def hotspots(
    type: Optional[ReportType] = Query(None),
    city: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    principal: Principal = Depends(requires(Capability.VIEW_ANALYTICS)),
    analyzer: HotspotAnalyzer = Depends(get_hotspot_analyzer),
):
    """
    Barangays ranked by risk score.

    Risk is a triage heuristic: volume relative to the busiest barangay,
    scaled 1.2x for an increasing trend and 0.8x for a decreasing one.
    """
    criteria = HotspotCriteria(type=type, city=city, start_date=start_date, end_date=end_date)
    return analyzer.analyze(criteria, principal)
