"""
Carrier zone rate API endpoints.
"""
import logging
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
from courier_ledger.api.deps import get_tenant
from courier_ledger.db.database import get_db
from courier_ledger.schemas.zone import (
    ZoneCreate,
    ZoneBulkRequest,
    ZoneBulkResponse,
    ZoneResponse,
    ZoneRateResponse,
)
from courier_ledger.services import zone_pricing
from courier_ledger.services.tenant import TenantContext

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=List[ZoneResponse])
async def list_zones(
    carrier_id: Optional[UUID] = None,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    return zone_pricing.list_zones(db, ctx, carrier_id)


@router.post("", response_model=ZoneResponse, status_code=status.HTTP_201_CREATED)
async def upsert_zone(
    zone_data: ZoneCreate,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Create a zone, or update the rate of an existing one with the same name."""
    return zone_pricing.upsert_zone(
        db,
        ctx,
        zone_data.carrier_id,
        zone_data.zone_name,
        zone_data.rate,
        zone_data.zone_code,
        zone_data.is_active,
    )


@router.post("/bulk", response_model=ZoneBulkResponse)
async def bulk_upsert_zones(
    bulk_data: ZoneBulkRequest,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    logger.info(f"Bulk zone upsert: carrier_id={bulk_data.carrier_id}, zones={len(bulk_data.zones)}")
    return zone_pricing.bulk_upsert_zones(
        db, ctx, bulk_data.carrier_id, [zone.model_dump() for zone in bulk_data.zones]
    )


@router.get("/rate", response_model=ZoneRateResponse)
async def get_zone_rate(
    carrier_id: UUID,
    zone_name: str = Query(..., min_length=1),
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Rate for an exact (case-sensitive) zone name."""
    rate = zone_pricing.rate_for(db, ctx, carrier_id, zone_name)
    return {"carrier_id": carrier_id, "zone_name": zone_name, "rate": rate}


@router.delete("/{zone_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_zone(
    zone_id: UUID,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    zone_pricing.delete_zone(db, ctx, zone_id)
