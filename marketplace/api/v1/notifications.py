"""
Notification API endpoints.

In-app notifications of the current user: listing, unread counter and
read receipts.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from marketplace.api.deps import CurrentUser, NotificationServiceDep
from marketplace.core.logging import get_logger
from marketplace.schemas.notifications import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from marketplace.services.notifications.service import (
    NotificationNotFoundError,
    NotificationServiceError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _service_error(e: NotificationServiceError) -> HTTPException:
    logger.error("Notification request failed", error=str(e), context=e.context)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": "Failed to process notifications", "code": "NOTIFICATION_ERROR"},
    )


@router.get("", response_model=NotificationListResponse, summary="List notifications")
async def list_notifications(
    current_user: CurrentUser,
    service: NotificationServiceDep,
    unread_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> NotificationListResponse:
    try:
        notifications, total = await service.list_notifications(
            current_user.id, unread_only=unread_only, skip=skip, limit=limit
        )
        unread = await service.count_unread(current_user.id)
    except NotificationServiceError as e:
        raise _service_error(e) from e

    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
        unread=unread,
        skip=skip,
        limit=limit,
    )


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Count unread")
async def unread_count(
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> UnreadCountResponse:
    try:
        return UnreadCountResponse(unread=await service.count_unread(current_user.id))
    except NotificationServiceError as e:
        raise _service_error(e) from e


@router.post(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark notification as read",
)
async def mark_as_read(
    notification_id: UUID,
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> NotificationResponse:
    try:
        notification = await service.mark_as_read(notification_id, current_user.id)
    except NotificationNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Notification not found", "code": "NOTIFICATION_NOT_FOUND"},
        ) from e
    except NotificationServiceError as e:
        raise _service_error(e) from e

    return NotificationResponse.model_validate(notification)


@router.post(
    "/read-all",
    response_model=MarkAllReadResponse,
    summary="Mark all notifications as read",
)
async def mark_all_as_read(
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> MarkAllReadResponse:
    try:
        return MarkAllReadResponse(updated=await service.mark_all_as_read(current_user.id))
    except NotificationServiceError as e:
        raise _service_error(e) from e
