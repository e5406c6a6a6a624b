"""
Reconciliation engine - turns delivery outcomes into a carrier's daily settlement.

Two entry points feed one upsert:
- Path A (process_settlement): a dispatch session whose courier sheet was imported.
- Path B (process_manual_reconciliation): an operator ticks delivered orders and
  types the cash received, no dispatch session required.

Both resolve a set of (order, outcome, expected, collected, fee) lines and hand
them to upsert_settlement, keyed by (store, carrier, settlement date). A carrier
has at most one settlement per day; reprocessing the same day updates it.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from courier_ledger.db.database import settings
from courier_ledger.config.mapping_loader import resolve_failure_reason
from courier_ledger.errors import (
    ConflictError,
    DiscrepancyConfirmationRequired,
    NotFoundError,
    SettlementError,
    ValidationError,
)
from courier_ledger.models import (
    Carrier,
    DailySettlement,
    DeliveryOutcome,
    DispatchSessionStatus,
    Order,
    OrderStatus,
    SettlementOrder,
    SettlementStatus,
)
from courier_ledger.models.order import OPEN_DELIVERY_STATUSES
from courier_ledger.services.codes import next_sequential_code
from courier_ledger.services.dispatch_service import active_session_codes, active_session_order_ids, get_session
from courier_ledger.services.money import CENT, ZERO, to_money
from courier_ledger.services.order_status import advance_order
from courier_ledger.services.payment_methods import is_order_cod
from courier_ledger.services.tenant import TenantContext
from courier_ledger.services.zone_pricing import get_carrier, zone_rate_map

logger = logging.getLogger(__name__)

FAILED_OUTCOMES = (DeliveryOutcome.FAILED, DeliveryOutcome.RETURNED)


@dataclass
class SettlementLine:
    """One order's contribution to a settlement."""
    order: Order
    outcome: DeliveryOutcome
    expected: Decimal
    collected: Decimal
    carrier_fee: Decimal
    failure_reason: Optional[str] = None
    notes: Optional[str] = None


def expected_basis(total_price: Optional[Decimal], zone_rate: Optional[Decimal]) -> Decimal:
    """An order's expected cash: its total, or the zone rate when it has none."""
    if total_price is not None:
        return to_money(total_price)
    return to_money(zone_rate)


def settlement_status_for(discrepancy: Decimal) -> SettlementStatus:
    return SettlementStatus.COMPLETED if to_money(discrepancy) == ZERO else SettlementStatus.WITH_ISSUES


def failed_attempt_percent(carrier: Optional[Carrier]) -> int:
    if carrier is not None and carrier.failed_attempt_fee_percent is not None:
        return carrier.failed_attempt_fee_percent
    return settings.default_failed_attempt_fee_percent


def spread_collected(expected: List[Decimal], collected: Decimal) -> List[Decimal]:
    """
    Attribute ``collected`` across delivered orders in proportion to what each
    was expected to bring in, in whole cents, with the rounding remainder on
    the last order. No order is attributed a negative amount.
    """
    if not expected:
        return []
    collected = to_money(collected)
    total = sum(expected, ZERO)
    if total > 0:
        amounts = [(collected * amount / total).quantize(CENT, rounding=ROUND_DOWN) for amount in expected]
    else:
        share = (collected / len(expected)).quantize(CENT, rounding=ROUND_DOWN)
        amounts = [share for _ in expected]
    amounts[-1] += collected - sum(amounts, ZERO)
    return amounts


def recompute_totals(settlement: DailySettlement, carrier: Optional[Carrier]) -> None:
    """Rebuild every derived figure from the settlement's linked order rows."""
    rows = list(settlement.orders)
    percent = Decimal(failed_attempt_percent(carrier)) / Decimal(100)

    expected = ZERO
    collected = ZERO
    fees = ZERO
    failed_fees = ZERO
    delivered = 0
    failed = 0
    for row in rows:
        expected += to_money(row.amount)
        collected += to_money(row.amount_collected)
        if row.delivery_outcome == DeliveryOutcome.DELIVERED:
            delivered += 1
            fees += to_money(row.carrier_fee)
        elif row.delivery_outcome in FAILED_OUTCOMES:
            failed += 1
            failed_fees += to_money(row.carrier_fee) * percent

    settlement.expected_cash = to_money(expected)
    settlement.collected_cash = to_money(collected)
    settlement.total_dispatched = len(rows)
    settlement.total_delivered = delivered
    settlement.total_failed = failed
    settlement.total_carrier_fees = to_money(fees)
    settlement.failed_attempt_fee = to_money(failed_fees)
    settlement.net_receivable = to_money(collected - fees - failed_fees)
    settlement.balance_due = to_money(abs(settlement.net_receivable) - to_money(settlement.amount_paid))
    settlement.status = settlement_status_for(settlement.discrepancy)


def find_settlement(
    db: Session, ctx: TenantContext, carrier_id: Optional[UUID], settlement_date: date, lock: bool = False
) -> Optional[DailySettlement]:
    query = db.query(DailySettlement).filter(
        DailySettlement.store_id == ctx.store_id,
        DailySettlement.settlement_date == settlement_date,
    )
    if carrier_id is None:
        query = query.filter(DailySettlement.carrier_id.is_(None))
    else:
        query = query.filter(DailySettlement.carrier_id == carrier_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def find_or_create_settlement(
    db: Session, ctx: TenantContext, carrier_id: Optional[UUID], settlement_date: date
) -> DailySettlement:
    """
    Return the settlement for (store, carrier, date), creating it if needed.

    Concurrent creators race on the unique key; the loser's savepoint rolls
    back and it picks up the winner's row on the next attempt.
    """
    attempts = max(1, settings.code_generation_retries)
    for attempt in range(1, attempts + 1):
        existing = find_settlement(db, ctx, carrier_id, settlement_date, lock=True)
        if existing:
            return existing

        settlement = DailySettlement(
            store_id=ctx.store_id,
            carrier_id=carrier_id,
            settlement_date=settlement_date,
            status=SettlementStatus.PENDING,
            settled_by=ctx.user_id,
            expected_cash=ZERO,
            collected_cash=ZERO,
            amount_paid=ZERO,
            balance_due=ZERO,
        )
        settlement.settlement_code = next_sequential_code(
            db, DailySettlement, "settlement_code", ctx.store_id, settings.settlement_code_prefix, settlement_date
        )
        try:
            with db.begin_nested():
                db.add(settlement)
                db.flush()
            logger.info("Created settlement %s for carrier %s on %s", settlement.settlement_code, carrier_id, settlement_date)
            return settlement
        except IntegrityError:
            logger.warning(
                "Settlement insert for carrier %s on %s collided (attempt %d/%d)",
                carrier_id, settlement_date, attempt, attempts,
            )
    raise ConflictError(f"Could not create the settlement for {settlement_date} after {attempts} attempts")


def upsert_settlement(
    db: Session,
    ctx: TenantContext,
    carrier: Carrier,
    settlement_date: date,
    lines: List[SettlementLine],
    notes: Optional[str] = None,
) -> DailySettlement:
    """
    Merge ``lines`` into the carrier's settlement for the day.

    Caller owns the transaction: nothing is committed here.
    """
    settlement = find_or_create_settlement(db, ctx, carrier.id, settlement_date)
    if settlement.has_payments:
        raise ConflictError(
            f"Settlement {settlement.settlement_code} already has payments recorded and cannot be changed"
        )

    order_ids = [line.order.id for line in lines]
    existing_rows = {
        row.order_id: row
        for row in db.query(SettlementOrder).filter(SettlementOrder.order_id.in_(order_ids)).all()
    }
    for line in lines:
        row = existing_rows.get(line.order.id)
        if row is not None and row.settlement_id != settlement.id:
            raise ConflictError(
                f"Order {line.order.reference} is already linked to another settlement",
                details=[{"field": "order_id", "message": str(line.order.id)}],
            )
        if row is None:
            row = SettlementOrder(order_id=line.order.id)
            settlement.orders.append(row)
        row.amount = to_money(line.expected)
        row.amount_collected = to_money(line.collected)
        row.delivery_outcome = line.outcome
        row.carrier_fee = to_money(line.carrier_fee)
        row.failure_reason = line.failure_reason
        row.notes = line.notes

        if not advance_order(db, line.order, line.outcome, to_money(line.collected)):
            raise ConflictError(
                f"Order {line.order.reference} was changed by someone else; reload and try again",
                details=[{"field": "order_id", "message": str(line.order.id)}],
            )

    if notes:
        settlement.notes = notes
    if ctx.user_id:
        settlement.settled_by = ctx.user_id
    db.flush()
    recompute_totals(settlement, carrier)
    db.flush()
    return settlement


def process_settlement(db: Session, ctx: TenantContext, session_id: UUID, notes: Optional[str] = None) -> DailySettlement:
    """Path A: settle an imported dispatch session."""
    try:
        session = get_session(db, ctx, session_id)
        if session.status == DispatchSessionStatus.CANCELLED:
            raise ConflictError(f"Dispatch session {session.session_code} is cancelled")
        if session.status not in (DispatchSessionStatus.IMPORTED, DispatchSessionStatus.PROCESSED):
            raise ValidationError.for_field(
                "status",
                f"Dispatch session {session.session_code} is {session.status.value}; import courier results first",
            )
        pending = [item.order_number for item in session.orders if item.delivery_outcome == DeliveryOutcome.PENDING]
        if pending:
            raise ValidationError(
                f"{len(pending)} order(s) still have no delivery outcome",
                details=[{"field": "orders", "message": f"Order {reference} has no outcome"} for reference in pending],
            )

        carrier = get_carrier(db, ctx, session.carrier_id)
        lines = [
            SettlementLine(
                order=item.order,
                outcome=item.delivery_outcome,
                expected=expected_basis(item.total_price, item.carrier_fee),
                collected=to_money(item.amount_collected),
                carrier_fee=to_money(item.carrier_fee),
                failure_reason=item.failure_reason,
                notes=item.courier_notes,
            )
            for item in session.orders
        ]
        settlement = upsert_settlement(db, ctx, carrier, session.dispatch_date, lines, notes)

        session.settlement_id = settlement.id
        session.status = DispatchSessionStatus.PROCESSED
        session.processed_at = datetime.utcnow()
        db.commit()
    except SettlementError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        logger.exception("Failed to process dispatch session %s", session_id)
        raise

    db.refresh(settlement)
    logger.info(
        "Processed session %s into %s: expected=%s collected=%s status=%s",
        session.session_code, settlement.settlement_code, settlement.expected_cash,
        settlement.collected_cash, settlement.status.value,
    )
    return settlement


def process_manual_reconciliation(
    db: Session,
    ctx: TenantContext,
    carrier_id: UUID,
    dispatch_date: date,
    orders: List[Dict[str, Any]],
    total_amount_collected: Decimal,
    discrepancy_notes: Optional[str] = None,
    confirm_discrepancy: bool = False,
) -> DailySettlement:
    """
    Path B: settle orders the operator marked delivered / not delivered by hand.

    ``orders`` items carry ``order_id``, ``delivered`` and, for undelivered
    orders, ``failure_reason``. A cash mismatch is only accepted with
    ``discrepancy_notes`` or ``confirm_discrepancy``.
    """
    collected_total = to_money(total_amount_collected)
    if collected_total < 0:
        raise ValidationError.for_field("total_amount_collected", "Collected amount cannot be negative")
    if not orders:
        raise ValidationError.for_field("orders", "At least one order is required")

    entries: Dict[UUID, Dict[str, Any]] = {}
    for entry in orders:
        entries[entry["order_id"]] = entry
    missing_reason = [
        str(order_id) for order_id, entry in entries.items()
        if not entry.get("delivered") and not (entry.get("failure_reason") or "").strip()
    ]
    if missing_reason:
        raise ValidationError(
            "Undelivered orders need a failure reason",
            details=[{"field": "failure_reason", "message": f"Order {order_id} needs a failure reason"} for order_id in missing_reason],
        )

    try:
        carrier = get_carrier(db, ctx, carrier_id)
        found = (
            db.query(Order)
            .filter(Order.store_id == ctx.store_id, Order.id.in_(list(entries)))
            .with_for_update()
            .all()
        )
        by_id = {order.id: order for order in found}
        missing = [str(order_id) for order_id in entries if order_id not in by_id]
        if missing:
            raise NotFoundError(
                f"{len(missing)} order(s) not found",
                details=[{"field": "orders", "message": f"Order {order_id} not found"} for order_id in missing],
            )

        wrong_carrier = [order for order in found if order.carrier_id != carrier.id]
        if wrong_carrier:
            raise ValidationError(
                "All orders must belong to the selected carrier",
                details=[{"field": "orders", "message": f"Order {order.reference} belongs to another carrier"} for order in wrong_carrier],
            )

        taken = active_session_codes(db, ctx, list(entries))
        if taken:
            raise ConflictError(
                "Some orders are in an active dispatch session; settle them through the session",
                details=[{"field": "orders", "message": f"Order {by_id[order_id].reference} is in {code}"} for order_id, code in taken.items()],
            )

        existing = find_settlement(db, ctx, carrier.id, dispatch_date)
        already_linked = set()
        if existing:
            already_linked = {
                order_id for (order_id,) in db.query(SettlementOrder.order_id)
                .filter(SettlementOrder.settlement_id == existing.id, SettlementOrder.order_id.in_(list(entries)))
                .all()
            }
        not_open = [
            order for order in found
            if order.status not in OPEN_DELIVERY_STATUSES
            and order.id not in already_linked
        ]
        if not_open:
            raise ConflictError(
                "Some orders are not awaiting delivery",
                details=[{"field": "orders", "message": f"Order {order.reference} is {order.status.value}"} for order in not_open],
            )

        rates = zone_rate_map(db, ctx, carrier.id)
        lines: List[SettlementLine] = []
        delivered_lines: List[SettlementLine] = []
        for order_id, entry in entries.items():
            order = by_id[order_id]
            zone_rate = rates.get(order.delivery_zone)
            outcome = DeliveryOutcome.DELIVERED if entry.get("delivered") else DeliveryOutcome.FAILED
            failure_reason = None
            if outcome == DeliveryOutcome.FAILED:
                failure_reason = resolve_failure_reason(entry.get("failure_reason")) or "other"
            line = SettlementLine(
                order=order,
                outcome=outcome,
                expected=expected_basis(order.total_price, zone_rate),
                collected=ZERO,
                carrier_fee=to_money(zone_rate),
                failure_reason=failure_reason,
                notes=(entry.get("notes") or "").strip() or None,
            )
            lines.append(line)
            if outcome == DeliveryOutcome.DELIVERED:
                delivered_lines.append(line)

        expected_total = sum((line.expected for line in lines), ZERO)
        discrepancy = collected_total - expected_total
        notes = (discrepancy_notes or "").strip()
        if discrepancy != ZERO and not notes and not confirm_discrepancy:
            raise DiscrepancyConfirmationRequired(discrepancy)
        if collected_total > 0 and not delivered_lines:
            raise ValidationError.for_field(
                "total_amount_collected", "Cash was collected but no order is marked delivered"
            )

        for line, amount in zip(delivered_lines, spread_collected([line.expected for line in delivered_lines], collected_total)):
            line.collected = amount

        settlement = upsert_settlement(db, ctx, carrier, dispatch_date, lines, notes or None)
        db.commit()
    except SettlementError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        logger.exception("Manual reconciliation failed for carrier %s on %s", carrier_id, dispatch_date)
        raise

    db.refresh(settlement)
    logger.info(
        "Manual reconciliation %s for %s on %s: expected=%s collected=%s status=%s",
        settlement.settlement_code, carrier.name, dispatch_date, settlement.expected_cash,
        settlement.collected_cash, settlement.status.value,
    )
    return settlement


def list_shipped_orders_grouped(db: Session, ctx: TenantContext) -> List[Dict[str, Any]]:
    """
    Shipped orders not yet settled and not riding in an active session,
    grouped by (carrier, shipped date), newest date first.
    """
    orders = (
        db.query(Order)
        .filter(
            Order.store_id == ctx.store_id,
            Order.status == OrderStatus.SHIPPED,
            Order.carrier_id.isnot(None),
            Order.id.notin_(active_session_order_ids(ctx)),
            Order.id.notin_(select(SettlementOrder.order_id)),
        )
        .order_by(Order.shipped_at)
        .all()
    )

    carriers = {
        carrier.id: carrier
        for carrier in db.query(Carrier).filter(Carrier.store_id == ctx.store_id).all()
    }
    rates_by_carrier: Dict[UUID, Dict[str, Decimal]] = {}
    groups: Dict[tuple, Dict[str, Any]] = defaultdict(dict)
    for order in orders:
        shipped_on = (order.shipped_at or order.updated_at or order.created_at).date()
        key = (order.carrier_id, shipped_on)
        carrier = carriers.get(order.carrier_id)
        if order.carrier_id not in rates_by_carrier:
            rates_by_carrier[order.carrier_id] = zone_rate_map(db, ctx, order.carrier_id)
        zone_rate = rates_by_carrier[order.carrier_id].get(order.delivery_zone)

        group = groups[key]
        if not group:
            group.update({
                "carrier_id": order.carrier_id,
                "carrier_name": carrier.name if carrier else None,
                "dispatch_date": shipped_on,
                "failed_attempt_fee_percent": failed_attempt_percent(carrier),
                "total_orders": 0,
                "total_cod_expected": ZERO,
                "total_prepaid": 0,
                "orders": [],
            })
        is_cod = is_order_cod(order.payment_method, order.payment_status)
        basis = expected_basis(order.total_price, zone_rate)
        group["total_orders"] += 1
        if is_cod:
            group["total_cod_expected"] += basis
        else:
            group["total_prepaid"] += 1
        group["orders"].append({
            "id": order.id,
            "order_number": order.reference,
            "customer_name": order.customer_name,
            "delivery_zone": order.delivery_zone,
            "total_price": order.total_price,
            "is_cod": is_cod,
            "carrier_fee": to_money(zone_rate),
            "shipped_at": order.shipped_at,
        })

    by_carrier = sorted(groups.values(), key=lambda group: group["carrier_name"] or "")
    return sorted(by_carrier, key=lambda group: group["dispatch_date"], reverse=True)
