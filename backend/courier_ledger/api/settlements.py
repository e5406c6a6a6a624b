"""
Settlement API endpoints.
"""
import logging
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
from datetime import date
from courier_ledger.api.deps import get_tenant
from courier_ledger.db.database import get_db
from courier_ledger.models import SettlementStatus
from courier_ledger.schemas.settlement import (
    ManualReconciliationRequest,
    SettlementResponse,
    SettlementDetailResponse,
    SettlementListResponse,
    MarkPaidRequest,
    SettlementCreate,
    SettlementUpdate,
    SettlementComplete,
    PendingByCarrierResponse,
    SettlementSummaryResponse,
)
from courier_ledger.services import reconciliation_service, settlement_service
from courier_ledger.services.tenant import TenantContext

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/manual-reconciliation", response_model=SettlementDetailResponse, status_code=status.HTTP_201_CREATED)
async def manual_reconciliation(
    reconciliation_data: ManualReconciliationRequest,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Settle orders ticked off by hand, without a courier sheet."""
    logger.info(
        f"Manual reconciliation: carrier_id={reconciliation_data.carrier_id}, "
        f"date={reconciliation_data.dispatch_date}, orders={len(reconciliation_data.orders)}"
    )
    return reconciliation_service.process_manual_reconciliation(
        db,
        ctx,
        carrier_id=reconciliation_data.carrier_id,
        dispatch_date=reconciliation_data.dispatch_date,
        orders=[order.model_dump() for order in reconciliation_data.orders],
        total_amount_collected=reconciliation_data.total_amount_collected,
        discrepancy_notes=reconciliation_data.discrepancy_notes,
        confirm_discrepancy=reconciliation_data.confirm_discrepancy,
    )


@router.get("/v2", response_model=SettlementListResponse)
async def list_settlements(
    status_filter: Optional[SettlementStatus] = Query(None, alias="status"),
    carrier_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    settlements, total = settlement_service.list_settlements(
        db, ctx, status_filter, carrier_id, start_date, end_date, limit, offset
    )
    return {"items": settlements, "total": total}


@router.get("/v2/{settlement_id}", response_model=SettlementDetailResponse)
async def get_settlement(
    settlement_id: UUID,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    return settlement_service.get_settlement(db, ctx, settlement_id)


@router.post("/v2/{settlement_id}/pay", response_model=SettlementResponse)
async def mark_settlement_paid(
    settlement_id: UUID,
    payment_data: MarkPaidRequest,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    return settlement_service.mark_paid(
        db,
        ctx,
        settlement_id,
        amount=payment_data.amount,
        method=payment_data.method,
        reference=payment_data.reference,
        notes=payment_data.notes,
    )


@router.get("/pending-by-carrier", response_model=List[PendingByCarrierResponse])
async def pending_by_carrier(
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    return settlement_service.pending_by_carrier(db, ctx)


@router.get("/summary/v2", response_model=SettlementSummaryResponse)
async def settlement_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    return settlement_service.summary(db, ctx, start_date, end_date)


@router.post("/", response_model=SettlementDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_settlement(
    settlement_data: SettlementCreate,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Open a pending settlement by hand."""
    return settlement_service.create_pending_settlement(
        db,
        ctx,
        settlement_date=settlement_data.settlement_date,
        carrier_id=settlement_data.carrier_id,
        order_ids=settlement_data.order_ids,
        notes=settlement_data.notes,
    )


@router.put("/{settlement_id}", response_model=SettlementResponse)
async def update_settlement(
    settlement_id: UUID,
    settlement_data: SettlementUpdate,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    return settlement_service.update_settlement_notes(db, ctx, settlement_id, settlement_data.notes)


@router.post("/{settlement_id}/complete", response_model=SettlementResponse)
async def complete_settlement(
    settlement_id: UUID,
    complete_data: SettlementComplete,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    return settlement_service.complete_settlement(
        db, ctx, settlement_id, complete_data.collected_cash, complete_data.notes
    )


@router.delete("/{settlement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_settlement(
    settlement_id: UUID,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Delete a pending settlement. Reconciled settlements are kept for audit."""
    settlement_service.delete_settlement(db, ctx, settlement_id)
