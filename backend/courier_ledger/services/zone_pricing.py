"""
Carrier zone pricing - delivery rate lookup by carrier and zone name.

Zone names are matched exactly (case-sensitive); "Centro" and "centro" are two
different zones.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from courier_ledger.errors import NotFoundError, ValidationError
from courier_ledger.models import Carrier, CarrierZone
from courier_ledger.services.money import to_money
from courier_ledger.services.tenant import TenantContext

logger = logging.getLogger(__name__)


def get_carrier(db: Session, ctx: TenantContext, carrier_id: UUID, require_active: bool = False) -> Carrier:
    carrier = (
        db.query(Carrier)
        .filter(Carrier.id == carrier_id, Carrier.store_id == ctx.store_id)
        .first()
    )
    if not carrier:
        raise NotFoundError(f"Carrier {carrier_id} not found")
    if require_active and not carrier.is_active:
        raise ValidationError.for_field("carrier_id", f"Carrier {carrier.name} is not active")
    return carrier


def zone_rate_map(db: Session, ctx: TenantContext, carrier_id: UUID) -> Dict[str, Decimal]:
    """Active zones of a carrier keyed by exact zone name."""
    zones = (
        db.query(CarrierZone)
        .filter(
            CarrierZone.store_id == ctx.store_id,
            CarrierZone.carrier_id == carrier_id,
            CarrierZone.is_active.is_(True),
        )
        .all()
    )
    return {zone.zone_name: to_money(zone.rate) for zone in zones}


def rate_for(db: Session, ctx: TenantContext, carrier_id: UUID, zone_name: Optional[str]) -> Decimal:
    if not zone_name:
        raise NotFoundError("Zone name is required for a rate lookup")
    zone = (
        db.query(CarrierZone)
        .filter(
            CarrierZone.store_id == ctx.store_id,
            CarrierZone.carrier_id == carrier_id,
            CarrierZone.zone_name == zone_name,
            CarrierZone.is_active.is_(True),
        )
        .first()
    )
    if not zone:
        raise NotFoundError(f"No active zone '{zone_name}' for carrier {carrier_id}")
    return to_money(zone.rate)


def list_zones(db: Session, ctx: TenantContext, carrier_id: Optional[UUID] = None) -> List[CarrierZone]:
    query = db.query(CarrierZone).filter(CarrierZone.store_id == ctx.store_id)
    if carrier_id:
        query = query.filter(CarrierZone.carrier_id == carrier_id)
    return query.order_by(CarrierZone.zone_name).all()


def _upsert_zone(
    db: Session,
    ctx: TenantContext,
    carrier_id: UUID,
    zone_name: str,
    rate,
    zone_code: Optional[str] = None,
    is_active: bool = True,
) -> Tuple[CarrierZone, bool]:
    zone_name = (zone_name or "").strip()
    if not zone_name:
        raise ValidationError.for_field("zone_name", "Zone name cannot be empty")
    rate = to_money(rate)
    if rate < 0:
        raise ValidationError.for_field("rate", "Zone rate cannot be negative")

    zone = (
        db.query(CarrierZone)
        .filter(CarrierZone.carrier_id == carrier_id, CarrierZone.zone_name == zone_name)
        .first()
    )
    created = zone is None
    if created:
        zone = CarrierZone(store_id=ctx.store_id, carrier_id=carrier_id, zone_name=zone_name)
        db.add(zone)
    zone.rate = rate
    zone.zone_code = zone_code or None
    zone.is_active = is_active
    return zone, created


def upsert_zone(
    db: Session,
    ctx: TenantContext,
    carrier_id: UUID,
    zone_name: str,
    rate,
    zone_code: Optional[str] = None,
    is_active: bool = True,
) -> CarrierZone:
    get_carrier(db, ctx, carrier_id)
    try:
        zone, created = _upsert_zone(db, ctx, carrier_id, zone_name, rate, zone_code, is_active)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(zone)
    logger.info("%s zone '%s' for carrier %s rate=%s", "Created" if created else "Updated", zone.zone_name, carrier_id, zone.rate)
    return zone


def bulk_upsert_zones(db: Session, ctx: TenantContext, carrier_id: UUID, zones: Iterable[dict]) -> Dict[str, int]:
    get_carrier(db, ctx, carrier_id)
    created_count = 0
    updated_count = 0
    try:
        for zone in zones:
            _, created = _upsert_zone(
                db,
                ctx,
                carrier_id,
                zone.get("zone_name"),
                zone.get("rate"),
                zone.get("zone_code"),
                zone.get("is_active", True),
            )
            db.flush()
            if created:
                created_count += 1
            else:
                updated_count += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Bulk zone upsert for carrier %s created=%d updated=%d", carrier_id, created_count, updated_count)
    return {"created": created_count, "updated": updated_count}


def delete_zone(db: Session, ctx: TenantContext, zone_id: UUID) -> None:
    zone = (
        db.query(CarrierZone)
        .filter(CarrierZone.id == zone_id, CarrierZone.store_id == ctx.store_id)
        .first()
    )
    if not zone:
        raise NotFoundError(f"Zone {zone_id} not found")
    db.delete(zone)
    db.commit()
    logger.info("Deleted zone %s (%s)", zone_id, zone.zone_name)
