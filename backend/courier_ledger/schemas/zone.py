"""
Carrier zone schemas.
"""
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from typing import Optional, List


class ZoneRate(BaseModel):
    zone_name: str = Field(min_length=1)
    zone_code: Optional[str] = None
    rate: Decimal = Field(ge=0)
    is_active: bool = True


class ZoneCreate(ZoneRate):
    carrier_id: UUID


class ZoneBulkRequest(BaseModel):
    carrier_id: UUID
    zones: List[ZoneRate] = Field(min_length=1)


class ZoneBulkResponse(BaseModel):
    created: int
    updated: int


class ZoneResponse(BaseModel):
    id: UUID
    carrier_id: UUID
    zone_name: str
    zone_code: Optional[str] = None
    rate: Decimal
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ZoneRateResponse(BaseModel):
    carrier_id: UUID
    zone_name: str
    rate: Decimal
