"""
In-app notification inbox endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from agapay.models.base import DataResponse
from agapay.models.user import Principal
from agapay.services.notification_service import NotificationService, get_notification_service
from agapay.utils.security import get_current_principal

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=DataResponse)
async def my_notifications(
    is_read: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
):
    return DataResponse(data=service.list_for_user(principal, is_read, page, limit))


@router.patch("/read-all", response_model=DataResponse)
async def mark_all_read(
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
):
    count = service.mark_all_as_read(principal)
    return DataResponse(message=f"{count} notifications marked as read", data={"updated": count})


@router.patch("/{notification_id}/read", response_model=DataResponse)
async def mark_read(
    notification_id: str,
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
):
    return DataResponse(data=service.mark_as_read(notification_id, principal))
