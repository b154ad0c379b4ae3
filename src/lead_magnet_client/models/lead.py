from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LeadSubmission(BaseModel):
    name: Optional[str] = None
    email: EmailStr


class LeadInDB(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    page_id: int
    email: str
    name: Optional[str] = None
    created: Optional[datetime] = None


class CustomerInDB(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created: Optional[datetime] = None
    edited: Optional[datetime] = None


CustomerStatus = Literal["potential", "active", "inactive"]


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    company: Optional[str] = None
    notes: Optional[str] = None
    status: CustomerStatus = "potential"


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[CustomerStatus] = None


class CustomerPage(BaseModel):
    customers: list[CustomerInDB]
    page: int
    limit: int
    total: int
    total_pages: int


class AnalyticsEvent(BaseModel):
    page_id: int
    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


class LeadResult(BaseModel):
    download_url: str
    redirect_url: str
    lead_created: bool
