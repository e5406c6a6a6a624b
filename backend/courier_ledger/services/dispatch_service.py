"""
Dispatch sessions - batching confirmed orders for a carrier and round-tripping
the courier's result sheet.

Lifecycle: open -> exported -> imported -> processed (see reconciliation_service).
"""
from __future__ import annotations

import io
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from courier_ledger.config.mapping_loader import match_column, resolve_failure_reason, resolve_outcome
from courier_ledger.db.database import settings
from courier_ledger.errors import ConflictError, NotFoundError, ValidationError
from courier_ledger.models import (
    DeliveryOutcome,
    DispatchSession,
    DispatchSessionOrder,
    DispatchSessionStatus,
    Order,
    OrderStatus,
)
from courier_ledger.models.dispatch_session import CLOSED_SESSION_STATUSES
from courier_ledger.services.codes import add_with_code, business_date, next_sequential_code
from courier_ledger.services.money import ZERO, parse_amount, to_money
from courier_ledger.services.order_status import advance_order
from courier_ledger.services.payment_methods import amount_to_collect, is_order_cod, payment_type_label
from courier_ledger.services.tenant import TenantContext
from courier_ledger.services.zone_pricing import get_carrier, zone_rate_map

logger = logging.getLogger(__name__)

# Courier sheet layout: (header, source)
EXPORT_COLUMNS = [
    ("NroReferencia", "reference"),
    ("NOMBRE Y APELLIDO", "customer_name"),
    ("Telefono", "customer_phone"),
    ("Direccion", "delivery_address"),
    ("ZONA", "delivery_zone"),
    ("TIPO_PAGO", "payment_type"),
    ("A_COBRAR", "amount_to_collect"),
    ("IMPORTE_TOTAL", "total_price"),
    ("Tarifa_Envio", "carrier_fee"),
    ("ESTADO_ENTREGA", None),
    ("MONTO_COBRADO", None),
    ("MOTIVO_NO_ENTREGA", None),
    ("OBSERVACIONES", None),
]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_ENCODINGS = ("utf-8-sig", "latin-1", "cp1252")


def _normalize_reference(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lstrip("#").strip().upper()


def active_session_codes(
    db: Session,
    ctx: TenantContext,
    order_ids: Iterable[UUID],
    exclude_session_id: Optional[UUID] = None,
) -> Dict[UUID, str]:
    """order id -> code of the open/exported/imported session holding it"""
    order_ids = list(order_ids)
    if not order_ids:
        return {}
    query = (
        db.query(DispatchSessionOrder.order_id, DispatchSession.session_code)
        .join(DispatchSession, DispatchSession.id == DispatchSessionOrder.dispatch_session_id)
        .filter(
            DispatchSession.store_id == ctx.store_id,
            DispatchSession.status.notin_(CLOSED_SESSION_STATUSES),
            DispatchSessionOrder.order_id.in_(order_ids),
        )
    )
    if exclude_session_id:
        query = query.filter(DispatchSession.id != exclude_session_id)
    return {order_id: code for order_id, code in query.all()}


def active_session_order_ids(ctx: TenantContext):
    """Subquery of order ids held by a store's active sessions."""
    return (
        select(DispatchSessionOrder.order_id)
        .join(DispatchSession, DispatchSession.id == DispatchSessionOrder.dispatch_session_id)
        .where(
            DispatchSession.store_id == ctx.store_id,
            DispatchSession.status.notin_(CLOSED_SESSION_STATUSES),
        )
    )


def list_orders_to_dispatch(db: Session, ctx: TenantContext, carrier_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
    """Confirmed orders that are not already riding in an active session."""
    query = db.query(Order).filter(
        Order.store_id == ctx.store_id,
        Order.status == OrderStatus.CONFIRMED,
        Order.id.notin_(active_session_order_ids(ctx)),
    )
    if carrier_id:
        query = query.filter(Order.carrier_id == carrier_id)
    orders = query.order_by(Order.created_at).all()

    rates_by_carrier: Dict[UUID, Dict[str, Decimal]] = {}
    result = []
    for order in orders:
        rates = {}
        if order.carrier_id:
            if order.carrier_id not in rates_by_carrier:
                rates_by_carrier[order.carrier_id] = zone_rate_map(db, ctx, order.carrier_id)
            rates = rates_by_carrier[order.carrier_id]
        is_cod = is_order_cod(order.payment_method, order.payment_status)
        result.append({
            "id": order.id,
            "order_number": order.reference,
            "customer_name": order.customer_name,
            "customer_phone": order.customer_phone,
            "shipping_address": order.shipping_address,
            "delivery_zone": order.delivery_zone,
            "total_price": order.total_price,
            "payment_method": order.payment_method,
            "is_cod": is_cod,
            "carrier_id": order.carrier_id,
            "carrier_fee": rates.get(order.delivery_zone, ZERO),
            "created_at": order.created_at,
        })
    return result


def list_sessions(
    db: Session,
    ctx: TenantContext,
    status: Optional[DispatchSessionStatus] = None,
    carrier_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[DispatchSession], int]:
    query = db.query(DispatchSession).filter(DispatchSession.store_id == ctx.store_id)
    if status:
        query = query.filter(DispatchSession.status == status)
    if carrier_id:
        query = query.filter(DispatchSession.carrier_id == carrier_id)
    if start_date:
        query = query.filter(DispatchSession.dispatch_date >= start_date)
    if end_date:
        query = query.filter(DispatchSession.dispatch_date <= end_date)
    total = query.count()
    sessions = (
        query.options(joinedload(DispatchSession.carrier))
        .order_by(DispatchSession.dispatch_date.desc(), DispatchSession.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return sessions, total


def get_session(db: Session, ctx: TenantContext, session_id: UUID) -> DispatchSession:
    session = (
        db.query(DispatchSession)
        .options(joinedload(DispatchSession.carrier))
        .filter(DispatchSession.id == session_id, DispatchSession.store_id == ctx.store_id)
        .first()
    )
    if not session:
        raise NotFoundError(f"Dispatch session {session_id} not found")
    return session


def create_session(
    db: Session,
    ctx: TenantContext,
    carrier_id: UUID,
    order_ids: List[UUID],
    dispatch_date: Optional[date] = None,
) -> DispatchSession:
    """
    Batch confirmed orders for one carrier.

    Validation is all-or-nothing: a single missing, unconfirmed or already
    dispatched order rejects the whole batch. Orders stay ``confirmed``.
    """
    unique_ids = list(dict.fromkeys(order_ids or []))
    if not unique_ids:
        raise ValidationError.for_field("order_ids", "At least one order is required")

    try:
        carrier = get_carrier(db, ctx, carrier_id, require_active=True)

        orders = (
            db.query(Order)
            .filter(Order.store_id == ctx.store_id, Order.id.in_(unique_ids))
            .with_for_update()
            .all()
        )
        by_id = {order.id: order for order in orders}
        missing = [str(order_id) for order_id in unique_ids if order_id not in by_id]
        if missing:
            raise NotFoundError(
                f"{len(missing)} order(s) not found",
                details=[{"field": "order_ids", "message": f"Order {order_id} not found"} for order_id in missing],
            )

        not_confirmed = [by_id[order_id] for order_id in unique_ids if by_id[order_id].status != OrderStatus.CONFIRMED]
        if not_confirmed:
            raise ValidationError(
                "Only confirmed orders can be dispatched",
                details=[
                    {"field": "order_ids", "message": f"Order {order.reference} is {order.status.value}"}
                    for order in not_confirmed
                ],
            )

        taken = active_session_codes(db, ctx, unique_ids)
        if taken:
            raise ConflictError(
                "Some orders are already in an active dispatch session",
                details=[
                    {"field": "order_ids", "message": f"Order {by_id[order_id].reference} is in {code}"}
                    for order_id, code in taken.items()
                ],
            )

        rates = zone_rate_map(db, ctx, carrier.id)
        dispatch_day = dispatch_date or business_date()
        session = DispatchSession(
            store_id=ctx.store_id,
            carrier_id=carrier.id,
            dispatch_date=dispatch_day,
            status=DispatchSessionStatus.OPEN,
            created_by=ctx.user_id,
        )

        total_cod = ZERO
        total_prepaid = ZERO
        for position, order_id in enumerate(unique_ids, start=1):
            order = by_id[order_id]
            is_cod = is_order_cod(order.payment_method, order.payment_status)
            total = to_money(order.total_price) if order.total_price is not None else None
            if is_cod:
                total_cod += amount_to_collect(True, total)
            else:
                total_prepaid += total or ZERO
            session.orders.append(DispatchSessionOrder(
                order_id=order.id,
                position=position,
                order_number=order.reference,
                customer_name=order.customer_name,
                customer_phone=order.customer_phone,
                delivery_address=order.shipping_address,
                delivery_zone=order.delivery_zone,
                total_price=total,
                payment_method=order.payment_method,
                is_cod=is_cod,
                carrier_fee=rates.get(order.delivery_zone, ZERO),
                delivery_outcome=DeliveryOutcome.PENDING,
            ))
        session.total_orders = len(unique_ids)
        session.total_cod_expected = to_money(total_cod)
        session.total_prepaid = to_money(total_prepaid)

        add_with_code(
            db,
            session,
            "session_code",
            lambda: next_sequential_code(
                db, DispatchSession, "session_code", ctx.store_id, settings.dispatch_code_prefix, dispatch_day
            ),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(session)
    logger.info(
        "Created dispatch session %s for carrier %s with %d orders (COD expected %s)",
        session.session_code, carrier.name, session.total_orders, session.total_cod_expected,
    )
    return session


def _export_frame(session: DispatchSession) -> pd.DataFrame:
    rows = []
    for item in session.orders:
        values = {
            "reference": item.order_number,
            "customer_name": item.customer_name,
            "customer_phone": item.customer_phone,
            "delivery_address": item.delivery_address,
            "delivery_zone": item.delivery_zone,
            "payment_type": payment_type_label(item.is_cod),
            "amount_to_collect": amount_to_collect(item.is_cod, item.total_price),
            "total_price": item.total_price if item.total_price is not None else ZERO,
            "carrier_fee": item.carrier_fee,
        }
        rows.append({header: values.get(source, "") if source else "" for header, source in EXPORT_COLUMNS})
    return pd.DataFrame(rows, columns=[header for header, _ in EXPORT_COLUMNS])


def _style_sheet(sheet) -> None:
    """Bold shaded header; courier-filled columns highlighted."""
    courier_headers = {header for header, source in EXPORT_COLUMNS if source is None}
    for cell in sheet[1]:
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = PatternFill("solid", fgColor="C65911" if cell.value in courier_headers else "1F4E79")
        cell.alignment = Alignment(horizontal="center")
    for column in sheet.columns:
        width = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        sheet.column_dimensions[column[0].column_letter].width = min(width + 2, 50)
    sheet.freeze_panes = "A2"


def export_session(
    db: Session, ctx: TenantContext, session_id: UUID, file_format: str = "csv"
) -> Tuple[bytes, str, str]:
    """
    Render the courier sheet. Returns (content, filename, media type).

    CSV output carries a UTF-8 BOM so spreadsheet tools pick up accents.
    """
    session = get_session(db, ctx, session_id)
    if session.status == DispatchSessionStatus.CANCELLED:
        raise ConflictError(f"Dispatch session {session.session_code} is cancelled")

    frame = _export_frame(session)
    file_format = (file_format or "csv").lower()
    if file_format == "xlsx":
        buffer = io.BytesIO()
        sheet_name = session.session_code[:31]
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            frame.to_excel(writer, sheet_name=sheet_name, index=False)
            _style_sheet(writer.sheets[sheet_name])
        content = buffer.getvalue()
        media_type = XLSX_MEDIA_TYPE
    elif file_format == "csv":
        content = ("\ufeff" + frame.to_csv(index=False)).encode("utf-8")
        media_type = "text/csv; charset=utf-8"
    else:
        raise ValidationError.for_field("format", f"Unsupported export format '{file_format}'")

    if session.status == DispatchSessionStatus.OPEN:
        try:
            session.status = DispatchSessionStatus.EXPORTED
            session.exported_at = datetime.utcnow()
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Dispatch session %s exported", session.session_code)

    return content, f"{session.session_code}.{file_format}", media_type


def import_results(db: Session, ctx: TenantContext, session_id: UUID, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Apply courier results to a session.

    Partial success: unknown references are listed as unmatched and rows whose
    order was moved by someone else are listed as conflicts; everything else is
    applied. Re-importing the same sheet leaves the same end state.
    """
    session = get_session(db, ctx, session_id)
    if session.status in CLOSED_SESSION_STATUSES:
        raise ConflictError(f"Dispatch session {session.session_code} is {session.status.value}")

    by_reference: Dict[str, DispatchSessionOrder] = {}
    for item in session.orders:
        by_reference[_normalize_reference(item.order_number)] = item
        by_reference[_normalize_reference(item.order_id)] = item

    summary: Dict[str, Any] = {
        "session_id": session.id,
        "session_code": session.session_code,
        "total_rows": len(rows),
        "matched": 0,
        "delivered": 0,
        "failed": 0,
        "unmatched": [],
        "conflicts": [],
        "warnings": [],
        "total_collected": ZERO,
    }

    try:
        for index, row in enumerate(rows, start=1):
            reference = row.get("order_reference")
            item = by_reference.get(_normalize_reference(reference))
            if item is None:
                summary["unmatched"].append(str(reference or f"row {index}"))
                continue

            raw_outcome = row.get("delivery_outcome")
            outcome_name = resolve_outcome(raw_outcome)
            if outcome_name is None:
                summary["warnings"].append(
                    f"{item.order_number}: unrecognised delivery status '{raw_outcome or ''}', row skipped"
                )
                continue
            outcome = DeliveryOutcome(outcome_name)

            reported = parse_amount(row.get("amount_collected"))
            if reported is not None and reported < 0:
                summary["warnings"].append(f"{item.order_number}: negative amount {reported}, row skipped")
                continue

            if outcome == DeliveryOutcome.DELIVERED:
                if not item.is_cod:
                    if reported:
                        summary["warnings"].append(
                            f"{item.order_number}: prepaid order reported {reported} collected, recorded as 0"
                        )
                    collected = ZERO
                elif reported is None:
                    collected = amount_to_collect(True, item.total_price)
                else:
                    collected = reported
                    due = to_money(amount_to_collect(True, item.total_price))
                    if to_money(reported) != due:
                        summary["warnings"].append(
                            f"{item.order_number}: collected {to_money(reported)} but {due} was due"
                        )
            else:
                if reported:
                    summary["warnings"].append(
                        f"{item.order_number}: {outcome.value} delivery reported {reported} collected, recorded as 0"
                    )
                collected = ZERO
            collected = to_money(collected)

            if not advance_order(db, item.order, outcome, collected):
                summary["conflicts"].append({
                    "order_reference": item.order_number,
                    "order_id": str(item.order_id),
                    "status": item.order.status.value,
                    "requested": outcome.value,
                })
                continue

            failure_text = row.get("failure_reason")
            item.delivery_outcome = outcome
            item.amount_collected = collected
            if outcome == DeliveryOutcome.DELIVERED:
                item.failure_reason = None
            else:
                item.failure_reason = resolve_failure_reason(failure_text) or "other"
            item.courier_notes = row.get("courier_notes") or row.get("notes") or item.courier_notes
            item.processed_at = datetime.utcnow()

            summary["matched"] += 1
            if outcome == DeliveryOutcome.DELIVERED:
                summary["delivered"] += 1
            else:
                summary["failed"] += 1
            summary["total_collected"] += collected

        if summary["matched"]:
            session.status = DispatchSessionStatus.IMPORTED
            session.imported_at = datetime.utcnow()
        db.commit()
    except Exception:
        db.rollback()
        raise

    if summary["unmatched"]:
        logger.warning(
            "Import into %s: %d unmatched reference(s): %s",
            session.session_code, len(summary["unmatched"]), ", ".join(summary["unmatched"][:10]),
        )
    logger.info(
        "Imported results into %s: matched=%d delivered=%d failed=%d conflicts=%d collected=%s",
        session.session_code, summary["matched"], summary["delivered"], summary["failed"],
        len(summary["conflicts"]), summary["total_collected"],
    )
    return summary


def decode_upload(raw: bytes) -> str:
    for encoding in CSV_ENCODINGS:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ValidationError.for_field("file", "Could not decode the uploaded file")


def parse_results_csv(raw: bytes) -> List[Dict[str, Any]]:
    """Read a courier result sheet into import rows keyed by field name."""
    text = decode_upload(raw).lstrip("\ufeff")
    if not text.strip():
        raise ValidationError.for_field("file", "The uploaded file is empty")
    try:
        header_line = text.splitlines()[0]
        sep = ";" if header_line.count(";") > header_line.count(",") else ","
        frame = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, sep=sep)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ValidationError.for_field("file", f"Could not parse CSV: {e}")

    column_map: Dict[str, str] = {}
    for header in frame.columns:
        field = match_column(str(header))
        if field and field not in column_map.values():
            column_map[header] = field
    if "order_reference" not in column_map.values():
        raise ValidationError.for_field("file", "No order reference column found in the uploaded file")

    frame = frame[list(column_map.keys())].rename(columns=column_map)
    rows = []
    for record in frame.to_dict(orient="records"):
        cleaned = {key: (value.strip() if isinstance(value, str) else value) for key, value in record.items()}
        if not cleaned.get("order_reference"):
            continue
        rows.append({key: (value if value != "" else None) for key, value in cleaned.items()})
    return rows


def import_results_csv(db: Session, ctx: TenantContext, session_id: UUID, raw: bytes) -> Dict[str, Any]:
    rows = parse_results_csv(raw)
    logger.info("Parsed %d result row(s) from uploaded sheet for session %s", len(rows), session_id)
    return import_results(db, ctx, session_id, rows)
