from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from leadcrm.leads.schemas import LeadRead
from leadcrm.users.schemas import PageMeta

UnitStatus = Literal["available", "reserved", "sold", "blocked"]


class UnitCreate(BaseModel):
    project: str = Field(min_length=1, max_length=255)
    unit_type: str = Field(min_length=1, max_length=255)
    unit_no: str = Field(min_length=1, max_length=64)
    status: UnitStatus = "available"
    price: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    size: Decimal | None = Field(default=None, ge=0, max_digits=8, decimal_places=2)
    description: str | None = None
    specifications: dict[str, Any] | None = None


class UnitUpdate(BaseModel):
    project: str | None = Field(default=None, min_length=1, max_length=255)
    unit_type: str | None = Field(default=None, min_length=1, max_length=255)
    unit_no: str | None = Field(default=None, min_length=1, max_length=64)
    status: UnitStatus | None = None
    price: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    size: Decimal | None = Field(default=None, ge=0, max_digits=8, decimal_places=2)
    description: str | None = None
    specifications: dict[str, Any] | None = None


class UnitRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project: str
    unit_type: str
    unit_no: str
    status: str
    price: Decimal | None
    size: Decimal | None
    description: str | None
    specifications: dict[str, Any] | None
    full_unit: str
    formatted_price: str
    is_available: bool
    created_at: datetime
    updated_at: datetime


class UnitDetailRead(UnitRead):
    leads: list[LeadRead] = Field(default_factory=list)


class UnitPage(BaseModel):
    data: list[UnitRead]
    meta: PageMeta
