"""
Broadcast endpoints - publish a consented report to the public channels.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, status

from agapay.models.base import DataResponse
from agapay.models.broadcast import PublishRequest, PublishResult
from agapay.models.user import Principal
from agapay.services.authorization import Capability, requires
from agapay.services.broadcast_scheduler import BroadcastScheduler, get_broadcast_scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/broadcast", tags=["Broadcast"])


@router.post("/{report_id}/publish", response_model=PublishResult)
async def publish_report(
    report_id: str,
    body: PublishRequest,
    principal: Principal = Depends(requires(Capability.PUBLISH_REPORT)),
    scheduler: BroadcastScheduler = Depends(get_broadcast_scheduler),
):
    """
    Publish now, or store a schedule when `scheduled_at` is in the future.

    Scheduled publications are sent by the periodic sweep, so they may go
    out up to one sweep interval late.
    """
    return await scheduler.publish(
        report_id,
        body.channels,
        principal,
        scheduled_at=body.scheduled_at,
        scope=body.scope,
        notes=body.notes,
    )


@router.post("/{report_id}/unpublish", response_model=DataResponse)
async def unpublish_report(
    report_id: str,
    notes: Optional[str] = Body(None, embed=True),
    principal: Principal = Depends(requires(Capability.PUBLISH_REPORT)),
    scheduler: BroadcastScheduler = Depends(get_broadcast_scheduler),
):
    report = await scheduler.unpublish(report_id, principal, notes=notes)
    return DataResponse(message="Report unpublished", data=report)


@router.delete("/{report_id}/schedule", response_model=DataResponse, status_code=status.HTTP_200_OK)
async def cancel_schedule(
    report_id: str,
    principal: Principal = Depends(requires(Capability.PUBLISH_REPORT)),
    scheduler: BroadcastScheduler = Depends(get_broadcast_scheduler),
):
    return DataResponse(message="Scheduled broadcast cancelled", data=scheduler.cancel_schedule(report_id, principal))


@router.get("/{report_id}/history", response_model=DataResponse)
async def broadcast_history(
    report_id: str,
    principal: Principal = Depends(requires(Capability.PUBLISH_REPORT)),
    scheduler: BroadcastScheduler = Depends(get_broadcast_scheduler),
):
    return DataResponse(data=scheduler.get_broadcast_history(report_id, principal))
