"""
Notification Pydantic schemas for API responses.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from marketplace.database.models.notification import (
    NotificationStatus,
    NotificationType,
)


class NotificationResponse(BaseModel):
    """In-app notification."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: NotificationType
    title: str
    message: str
    action_url: Optional[str] = None
    meta: dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    read_at: Optional[datetime] = None
    status: NotificationStatus
    created_at: datetime


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    total: int
    unread: int
    skip: int
    limit: int


class UnreadCountResponse(BaseModel):
    unread: int


class MarkAllReadResponse(BaseModel):
    updated: int
