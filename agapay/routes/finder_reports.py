"""
Finder report endpoints.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from agapay.models.base import DataResponse
from agapay.models.finder_report import FinderReportCreate, FinderStatus, FinderVerification
from agapay.models.user import Principal
from agapay.services.authorization import Capability, requires
from agapay.services.finder_report_service import FinderReportService, get_finder_report_service
from agapay.utils.forms import parse_json_form, read_uploads
from agapay.utils.security import get_current_principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/finder-reports", tags=["Finder Reports"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DataResponse)
async def create_finder_report(
    payload: str = Form(..., description="FinderReportCreate as JSON"),
    images: Optional[List[UploadFile]] = File(None),
    principal: Principal = Depends(requires(Capability.CREATE_FINDER_REPORT)),
    service: FinderReportService = Depends(get_finder_report_service),
):
    body = parse_json_form(FinderReportCreate, payload)
    finder_report = await service.create_finder_report(body, principal, await read_uploads(images))
    return DataResponse(message="Finder report submitted", data=finder_report)


@router.get("", response_model=DataResponse)
async def list_finder_reports(
    status_filter: Optional[FinderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(requires(Capability.VIEW_FINDER_REPORTS)),
    service: FinderReportService = Depends(get_finder_report_service),
):
    status_value = status_filter.value if status_filter else None
    return DataResponse(data=service.list_finder_reports(principal, status_value, page, limit))


@router.get("/report/{report_id}", response_model=DataResponse)
async def finder_reports_for_report(
    report_id: str,
    principal: Principal = Depends(get_current_principal),
    service: FinderReportService = Depends(get_finder_report_service),
):
    return DataResponse(data=service.list_for_report(report_id, principal))


@router.get("/{finder_report_id}", response_model=DataResponse)
async def get_finder_report(
    finder_report_id: str,
    principal: Principal = Depends(get_current_principal),
    service: FinderReportService = Depends(get_finder_report_service),
):
    return DataResponse(data=service.get_finder_report(finder_report_id, principal))


@router.patch("/{finder_report_id}/verify", response_model=DataResponse)
async def verify_finder_report(
    finder_report_id: str,
    body: FinderVerification,
    principal: Principal = Depends(requires(Capability.VERIFY_FINDER_REPORT)),
    service: FinderReportService = Depends(get_finder_report_service),
):
    finder_report = await service.verify_finder_report(finder_report_id, body, principal)
    return DataResponse(message=f"Finder report marked {body.status.value}", data=finder_report)
