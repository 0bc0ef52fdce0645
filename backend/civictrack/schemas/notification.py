"""Pydantic schemas for notification payloads."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from civictrack.models.notification import NotificationType
from civictrack.models.user import UserRole


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    recipient_user_id: Optional[UUID]
    recipient_department_id: Optional[UUID]
    issue_id: Optional[UUID]
    title: str
    message: str
    type: NotificationType
    is_read: bool
    created_at: datetime


class NotificationFeed(BaseModel):
    personal: List[NotificationResponse]
    department: List[NotificationResponse]


class BroadcastRequest(BaseModel):
    """Admin broadcast target: a user, a role (or ALL), and/or a department."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    user_id: Optional[UUID] = Field(None, alias="userId")
    role: Optional[str] = None
    department_id: Optional[UUID] = Field(None, alias="departmentId")

    @model_validator(mode="after")
    def check_target(self) -> "BroadcastRequest":
        if self.role and self.role != "ALL" and self.role not in UserRole.__members__:
            raise ValueError(f"role must be ALL or one of {list(UserRole.__members__)}")
        return self

    @property
    def target_role(self) -> Optional[UserRole]:
        if not self.role or self.role == "ALL":
            return None
        return UserRole(self.role)


class BroadcastResponse(BaseModel):
    count: int
