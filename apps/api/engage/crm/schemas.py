from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


TaskPriority = Literal["low", "medium", "high"]
TaskStatus = Literal["pending", "completed"]


class ContactCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = ""
    email: EmailStr | None = None
    phone: str | None = None
    company_id: UUID | None = None
    status: str = "lead"


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: UUID
    company_id: UUID | None
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    status: str
    created_at: datetime
    updated_at: datetime


class DealCreate(BaseModel):
    title: str = Field(min_length=1)
    stage: str = Field(default="lead", min_length=1)
    value: Decimal | None = None
    contact_id: UUID | None = None
    company_id: UUID | None = None


class DealChangeStageRequest(BaseModel):
    stage: str = Field(min_length=1)


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: UUID
    contact_id: UUID | None
    company_id: UUID | None
    title: str
    stage: str
    value: Decimal | None
    created_at: datetime
    updated_at: datetime


class ActivityCreate(BaseModel):
    contact_id: UUID | None = None
    deal_id: UUID | None = None
    activity_type: str = Field(min_length=1)
    subject: str | None = None
    body: str | None = None


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: UUID
    contact_id: UUID | None
    deal_id: UUID | None
    activity_type: str
    subject: str | None
    body: str | None
    created_at: datetime


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: UUID
    contact_id: UUID | None
    deal_id: UUID | None
    title: str
    description: str | None
    priority: TaskPriority
    status: TaskStatus
    due_date: datetime | None
    completed_at: datetime | None
    created_at: datetime


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: UUID
    title: str
    message: str | None
    type: str
    link: str | None
    is_read: bool
    created_at: datetime
