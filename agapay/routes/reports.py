"""
Report endpoints - submission, lifecycle transitions and queries.

Errors raised by the services are rendered by the application's exception
handlers; routes only translate HTTP input into service calls.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from agapay.models.base import DataResponse
from agapay.models.report import (
    ConsentUpdate,
    FollowUpRequest,
    OfficerAssignment,
    OwnerReportUpdate,
    ReportCreate,
    ReportFilters,
    ReportType,
    StationAssignment,
    StatusUpdateRequest,
    TransferRequest,
)
from agapay.models.user import Principal
from agapay.services.authorization import Capability, requires
from agapay.services.report_service import ReportService, get_report_service
from agapay.utils.forms import parse_json_form, read_upload, read_uploads
from agapay.utils.security import get_current_principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DataResponse)
async def submit_report(
    payload: str = Form(..., description="ReportCreate as JSON"),
    photo: Optional[UploadFile] = File(None, description="Most recent photo of the person"),
    additional_images: Optional[List[UploadFile]] = File(None),
    principal: Principal = Depends(requires(Capability.CREATE_REPORT)),
    service: ReportService = Depends(get_report_service),
):
    """
    Submit a new report.

    The address is geocoded and the nearest station (or the explicitly chosen
    one) is recorded before anything is stored. The report starts Pending.
    """
    report_in = parse_json_form(ReportCreate, payload)
    logger.info(f"POST /reports - {report_in.type.value} report from {principal.id}")
    report = await service.create_report(
        report_in,
        principal,
        photo=await read_upload(photo),
        additional_uploads=await read_uploads(additional_images),
    )
    return DataResponse(message="Report created successfully", data=report)


@router.get("", response_model=DataResponse)
async def list_reports(
    status_filter: Optional[str] = Query(None, alias="status"),
    type: Optional[ReportType] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(requires(Capability.VIEW_STATION_REPORTS)),
    service: ReportService = Depends(get_report_service),
):
    """Reports visible to the caller's station, city or (super admin) everything."""
    filters = ReportFilters(
        status=status_filter, type=type, start_date=start_date, end_date=end_date, page=page, limit=limit
    )
    return DataResponse(data=service.list_reports(principal, filters))


@router.get("/mine", response_model=DataResponse)
async def my_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(requires(Capability.VIEW_OWN_REPORTS)),
    service: ReportService = Depends(get_report_service),
):
    return DataResponse(data=service.list_user_reports(principal, page, limit))


@router.get("/public", response_model=DataResponse)
async def public_feed(
    city: Optional[str] = Query(None, description="Filter by city"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: ReportService = Depends(get_report_service),
):
    """Published reports; no authentication required."""
    return DataResponse(data=service.public_feed(page, limit, city))


@router.get("/{report_id}", response_model=DataResponse)
async def get_report(
    report_id: str,
    principal: Principal = Depends(get_current_principal),
    service: ReportService = Depends(get_report_service),
):
    return DataResponse(data=service.get_report(report_id, principal))


@router.patch("/{report_id}", response_model=DataResponse)
async def edit_report(
    report_id: str,
    payload: str = Form("{}", description="OwnerReportUpdate as JSON"),
    photo: Optional[UploadFile] = File(None),
    principal: Principal = Depends(requires(Capability.EDIT_OWN_REPORT)),
    service: ReportService = Depends(get_report_service),
):
    """Full edit by the reporter while the report is Pending."""
    changes = parse_json_form(OwnerReportUpdate, payload)
    report = await service.owner_edit(report_id, changes, principal, photo=await read_upload(photo))
    return DataResponse(message="Report updated", data=report)


@router.patch("/{report_id}/consent", response_model=DataResponse)
async def update_consent(
    report_id: str,
    body: ConsentUpdate,
    principal: Principal = Depends(requires(Capability.EDIT_OWN_REPORT)),
    service: ReportService = Depends(get_report_service),
):
    report = await service.update_consent(report_id, body.broadcast_consent, principal)
    return DataResponse(message="Broadcast consent updated", data=report)


@router.post("/{report_id}/assign-station", response_model=DataResponse)
async def assign_station(
    report_id: str,
    body: StationAssignment,
    principal: Principal = Depends(requires(Capability.ASSIGN_STATION)),
    service: ReportService = Depends(get_report_service),
):
    report = await service.assign_station(report_id, body.station_id, principal)
    return DataResponse(message="Station assigned", data=report)


@router.post("/{report_id}/assign-officer", response_model=DataResponse)
async def assign_officer(
    report_id: str,
    body: OfficerAssignment,
    principal: Principal = Depends(requires(Capability.ASSIGN_OFFICER)),
    service: ReportService = Depends(get_report_service),
):
    report = await service.assign_officer(report_id, body.officer_id, principal)
    return DataResponse(message="Officer assigned", data=report)


@router.patch("/{report_id}/status", response_model=DataResponse)
async def update_status(
    report_id: str,
    body: StatusUpdateRequest,
    principal: Principal = Depends(requires(Capability.UPDATE_STATUS)),
    service: ReportService = Depends(get_report_service),
):
    report = await service.update_status(report_id, body.status, principal, note=body.note)
    return DataResponse(message=f"Status updated to {report['status']}", data=report)


@router.post("/{report_id}/follow-ups", response_model=DataResponse)
async def add_follow_up(
    report_id: str,
    body: FollowUpRequest,
    principal: Principal = Depends(requires(Capability.ADD_FOLLOW_UP)),
    service: ReportService = Depends(get_report_service),
):
    report = await service.add_follow_up(report_id, body.note, principal)
    return DataResponse(message="Follow-up added", data=report)


@router.post("/{report_id}/reassign", response_model=DataResponse)
async def reassign_station(
    report_id: str,
    body: StationAssignment,
    principal: Principal = Depends(requires(Capability.REASSIGN_STATION)),
    service: ReportService = Depends(get_report_service),
):
    report = await service.reassign_station(report_id, body.station_id, principal)
    return DataResponse(message="Report reassigned", data=report)


@router.post("/{report_id}/transfer", response_model=DataResponse)
async def transfer_report(
    report_id: str,
    body: TransferRequest,
    principal: Principal = Depends(requires(Capability.TRANSFER_REPORT)),
    service: ReportService = Depends(get_report_service),
):
    archive = await service.transfer_report(report_id, body, principal)
    return DataResponse(message=f"Report transferred to {body.recipient_department}", data=archive)


@router.delete("/{report_id}", response_model=DataResponse)
async def delete_report(
    report_id: str,
    principal: Principal = Depends(requires(Capability.DELETE_REPORT)),
    service: ReportService = Depends(get_report_service),
):
    return DataResponse(message="Report deleted", data=service.delete_report(report_id, principal))
