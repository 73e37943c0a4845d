"""
Hotspot Analyzer - ranks barangays by incident volume and trend.

Heuristic for operational triage, not a statistically rigorous forecast:
- monthly incident series per barangay (gaps between its first and last
  observed month count as zero)
- exponentially weighted least-squares slope, weight exp(i/n) for point i
- next month = weighted mean of the last three months + slope
- risk = share of the busiest area's volume, scaled by the trend
"""

import logging
import math
from collections import Counter, defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from agapay.config.firebase import get_db
from agapay.core.settings import settings
from agapay.models.analytics import AreaRisk, HotspotCriteria, HotspotReport, MonthlyCount
from agapay.models.user import Principal
from agapay.services.report_service import report_city, scoped_reports
from agapay.utils.firestore_helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

INCREASING = "Increasing"
DECREASING = "Decreasing"
STABLE = "Stable"

TREND_FACTORS = {INCREASING: 1.2, DECREASING: 0.8, STABLE: 1.0}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def weighted_trend_slope(series: Sequence[float]) -> float:
    """
    Slope of the weighted least-squares line through (i, series[i]).

    Weights are exp(i / n); the total weight takes the place of n in the
    normal equations, so a flat series has slope 0.
    """
    n = len(series)
    if n < 2:
        return 0.0
    weights = [math.exp(i / n) for i in range(n)]
    sum_w = sum(weights)
    sum_x = sum(w * i for i, w in enumerate(weights))
    sum_y = sum(w * y for w, y in zip(weights, series))
    sum_xy = sum(w * i * y for i, (w, y) in enumerate(zip(weights, series)))
    sum_xx = sum(w * i * i for i, w in enumerate(weights))
    denominator = sum_w * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (sum_w * sum_xy - sum_x * sum_y) / denominator


def classify_trend(slope: float, stable_threshold: Optional[float] = None) -> str:
    threshold = settings.HOTSPOT_STABLE_SLOPE if stable_threshold is None else stable_threshold
    if abs(slope) < threshold:
        return STABLE
    return INCREASING if slope > 0 else DECREASING


def predict_next(series: Sequence[float], slope: float) -> int:
    """Weighted mean of the last (up to) three months, weights exp(0..2) oldest first, plus slope."""
    recent = list(series[-3:])
    if not recent:
        return 0
    weights = [math.exp(i) for i in range(len(recent))]
    average = sum(w * y for w, y in zip(weights, recent)) / sum(weights)
    return max(0, round_half_up(average + slope))


def risk_score(total: int, max_total: int, trend: str) -> int:
    if max_total <= 0:
        return 0
    score = round_half_up(total / max_total * 100 * TREND_FACTORS.get(trend, 1.0))
    return min(100, max(0, score))


def risk_level(score: int) -> str:
    if score >= 75:
        return "High"
    if score >= 50:
        return "Medium"
    return "Low"


def month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_range(first: str, last: str) -> List[str]:
    """Inclusive list of YYYY-MM keys from first to last."""
    year, month = map(int, first.split("-"))
    end_year, end_month = map(int, last.split("-"))
    keys = []
    while (year, month) <= (end_year, end_month):
        keys.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            month = 1
            year += 1
    return keys


def build_area(barangay: str, counts: Dict[str, int], by_type: Dict[str, int]) -> AreaRisk:
    """Monthly series and trend for one barangay; risk is filled in once the maximum is known."""
    months = month_range(min(counts), max(counts))
    series = [counts.get(key, 0) for key in months]
    slope = weighted_trend_slope(series)
    return AreaRisk(
        barangay=barangay,
        total_incidents=sum(series),
        by_type=dict(by_type),
        monthly=[MonthlyCount(month=key, count=count) for key, count in zip(months, series)],
        slope=round(slope, 4),
        trend=classify_trend(slope),
        predicted_next_month=predict_next(series, slope),
    )


def rank_areas(areas: List[AreaRisk], top_n: Optional[int] = None) -> List[AreaRisk]:
    top_n = top_n or settings.HOTSPOT_TOP_N
    max_total = max((area.total_incidents for area in areas), default=0)
    for area in areas:
        area.risk_score = risk_score(area.total_incidents, max_total, area.trend)
        area.risk_level = risk_level(area.risk_score)
    areas.sort(key=lambda a: (-a.risk_score, -a.total_incidents, a.barangay))
    return areas[:top_n]


class HotspotAnalyzer:
    def __init__(self, db=None):
        self.db = db or get_db()

    def _matching_reports(self, criteria: HotspotCriteria, principal: Principal) -> List[Dict]:
        start = as_utc(criteria.start_date)
        end = as_utc(criteria.end_date)
        city = (criteria.city or "").strip().lower()
        matched = []
        for report in scoped_reports(self.db, principal):
            created_at = as_utc(report.get("created_at"))
            if created_at is None:
                continue
            if criteria.type and report.get("type") != criteria.type.value:
                continue
            if city and report_city(report).strip().lower() != city:
                continue
            if start and created_at < start:
                continue
            if end and created_at > end:
                continue
            report["created_at"] = created_at
            matched.append(report)
        return matched

    def analyze(self, criteria: HotspotCriteria, principal: Principal) -> HotspotReport:
        reports = self._matching_reports(criteria, principal)

        monthly: Dict[str, Counter] = defaultdict(Counter)
        types: Dict[str, Counter] = defaultdict(Counter)
        for report in reports:
            address = (report.get("location") or {}).get("address") or {}
            barangay = address.get("barangay") or "Unknown"
            monthly[barangay][month_key(report["created_at"])] += 1
            types[barangay][report.get("type") or "Others"] += 1

        areas = [build_area(barangay, counts, types[barangay]) for barangay, counts in monthly.items()]
        ranked = rank_areas(areas)
        logger.info(
            f"Hotspot analysis for {principal.id}: {len(reports)} reports, "
            f"{len(areas)} barangays, top {len(ranked)}"
        )
        return HotspotReport(generated_at=utcnow(), total_reports=len(reports), areas=ranked)

    def overview(self, principal: Principal) -> Dict:
        """Type and status distribution plus the monthly report trend."""
        reports = self._matching_reports(HotspotCriteria(), principal)
        by_month = Counter(month_key(report["created_at"]) for report in reports)
        months = month_range(min(by_month), max(by_month)) if by_month else []
        return {
            "total_reports": len(reports),
            "by_type": dict(Counter(report.get("type") or "Others" for report in reports)),
            "by_status": dict(Counter(report.get("status") or "Pending" for report in reports)),
            "published": sum(1 for report in reports if report.get("is_published")),
            "monthly_trend": [{"month": key, "count": by_month.get(key, 0)} for key in months],
        }


_hotspot_analyzer: Optional[HotspotAnalyzer] = None


def get_hotspot_analyzer() -> HotspotAnalyzer:
    global _hotspot_analyzer
    if _hotspot_analyzer is None:
        _hotspot_analyzer = HotspotAnalyzer()
    return _hotspot_analyzer
