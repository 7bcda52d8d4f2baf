"""
Bistro — Notification Pydantic schemas
"""
from typing import Any, Literal

from pydantic import Field, field_validator

from bistro.schemas.common import CamelModel
from bistro.services.notifier import EVENT_TYPES


class NotificationCreate(CamelModel):
    user_id: str = Field(..., min_length=1)
    type: str
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    priority: Literal["low", "medium", "high"] = "medium"
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def known_type(cls, v: str) -> str:
        if v not in EVENT_TYPES:
            raise ValueError(f"type must be one of: {', '.join(EVENT_TYPES)}")
        return v


class NotificationOut(CamelModel):
    type: str
    recipient_account_id: str
    title: str
    message: str
    priority: str
    data: dict[str, Any]
    created_at: str
    delivered: bool


class NotificationSent(CamelModel):
    msg: str
    notification: NotificationOut
