"""
Dispatch session API endpoints.
"""
import logging
from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
from datetime import date
from courier_ledger.api.deps import get_tenant
from courier_ledger.db.database import get_db
from courier_ledger.errors import ValidationError
from courier_ledger.models import DispatchSessionStatus
from courier_ledger.schemas.dispatch_session import (
    OrderToDispatchResponse,
    DispatchSessionCreate,
    DispatchSessionDetailResponse,
    DispatchSessionListResponse,
    ImportResultsRequest,
    ImportResultsResponse,
    ShippedOrderGroup,
)
from courier_ledger.schemas.settlement import ProcessSettlementRequest, SettlementDetailResponse
from courier_ledger.services import dispatch_service, reconciliation_service
from courier_ledger.services.tenant import TenantContext

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_UPLOAD_BYTES = 5 * 1024 * 1024


@router.get("/orders-to-dispatch", response_model=List[OrderToDispatchResponse])
async def list_orders_to_dispatch(
    carrier_id: Optional[UUID] = None,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Confirmed orders not yet in an active dispatch session."""
    return dispatch_service.list_orders_to_dispatch(db, ctx, carrier_id)


@router.get("/dispatch-sessions", response_model=DispatchSessionListResponse)
async def list_dispatch_sessions(
    status_filter: Optional[DispatchSessionStatus] = Query(None, alias="status"),
    carrier_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    sessions, total = dispatch_service.list_sessions(
        db, ctx, status_filter, carrier_id, start_date, end_date, limit, offset
    )
    return {"items": sessions, "total": total}


@router.post("/dispatch-sessions", response_model=DispatchSessionDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_dispatch_session(
    session_data: DispatchSessionCreate,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Create a dispatch session from confirmed orders."""
    logger.info(f"Creating dispatch session: carrier_id={session_data.carrier_id}, orders={len(session_data.order_ids)}")
    return dispatch_service.create_session(
        db, ctx, session_data.carrier_id, session_data.order_ids, session_data.dispatch_date
    )


@router.get("/dispatch-sessions/{session_id}", response_model=DispatchSessionDetailResponse)
async def get_dispatch_session(
    session_id: UUID,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    return dispatch_service.get_session(db, ctx, session_id)


@router.get("/dispatch-sessions/{session_id}/export")
async def export_dispatch_session(
    session_id: UUID,
    file_format: str = Query("csv", alias="format"),
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Download the courier sheet (CSV with BOM, or XLSX)."""
    content, filename, media_type = dispatch_service.export_session(db, ctx, session_id, file_format)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/dispatch-sessions/{session_id}/import", response_model=ImportResultsResponse)
async def import_dispatch_results(
    session_id: UUID,
    import_data: ImportResultsRequest,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    rows = [row.model_dump() for row in import_data.results]
    return dispatch_service.import_results(db, ctx, session_id, rows)


@router.post("/dispatch-sessions/{session_id}/import-csv", response_model=ImportResultsResponse)
async def import_dispatch_results_csv(
    session_id: UUID,
    file: UploadFile = File(...),
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Upload the courier's filled-in CSV."""
    raw = await file.read()
    if not raw:
        raise ValidationError.for_field("file", "The uploaded file is empty")
    if len(raw) > MAX_UPLOAD_BYTES:
        raise ValidationError.for_field("file", "The uploaded file is too large")
    logger.info(f"Importing courier sheet {file.filename} ({len(raw)} bytes) into session {session_id}")
    return dispatch_service.import_results_csv(db, ctx, session_id, raw)


@router.post(
    "/dispatch-sessions/{session_id}/process",
    response_model=SettlementDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def process_dispatch_session(
    session_id: UUID,
    process_data: Optional[ProcessSettlementRequest] = None,
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Reconcile an imported session into the carrier's daily settlement."""
    notes = process_data.notes if process_data else None
    return reconciliation_service.process_settlement(db, ctx, session_id, notes)


@router.get("/shipped-orders-grouped", response_model=List[ShippedOrderGroup])
async def list_shipped_orders_grouped(
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    return reconciliation_service.list_shipped_orders_grouped(db, ctx)
