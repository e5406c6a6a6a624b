from __future__ import annotations

import unittest
from datetime import date, datetime
from decimal import Decimal

from support import DatabaseTestCase

from courier_ledger.errors import ConflictError, DiscrepancyConfirmationRequired, ValidationError
from courier_ledger.models import (
    DailySettlement,
    DispatchSessionStatus,
    OrderStatus,
    SettlementOrder,
    SettlementStatus,
)
from courier_ledger.services import dispatch_service, reconciliation_service, settlement_service
from courier_ledger.services.reconciliation_service import spread_collected

DISPATCH_DAY = date(2026, 10, 18)


class SpreadCollectedTests(unittest.TestCase):
    def test_exact_amount_keeps_order_totals(self) -> None:
        self.assertEqual(
            spread_collected([Decimal("100.00"), Decimal("50.00")], Decimal("150")),
            [Decimal("100.00"), Decimal("50.00")],
        )

    def test_shortfall_is_spread_with_remainder_on_last(self) -> None:
        amounts = spread_collected([Decimal("100.00"), Decimal("100.00"), Decimal("100.00")], Decimal("290"))
        self.assertEqual(amounts, [Decimal("96.66"), Decimal("96.66"), Decimal("96.68")])
        self.assertEqual(sum(amounts), Decimal("290.00"))

    def test_large_shortfall_never_goes_negative(self) -> None:
        amounts = spread_collected([Decimal("100.00"), Decimal("10.00")], Decimal("20"))
        self.assertEqual(amounts, [Decimal("18.18"), Decimal("1.82")])
        self.assertTrue(all(amount >= 0 for amount in amounts))

    def test_zero_expected_splits_evenly(self) -> None:
        self.assertEqual(
            spread_collected([Decimal("0"), Decimal("0")], Decimal("10.01")),
            [Decimal("5.00"), Decimal("5.01")],
        )


class ProcessSettlementTests(DatabaseTestCase):
    """Path A: dispatch session round-trip."""

    def setUp(self) -> None:
        super().setUp()
        self.carrier = self.make_carrier(fee_percent=50)
        self.o1 = self.make_order(self.carrier, total="100000")
        self.o2 = self.make_order(self.carrier, total="50000")
        self.session = dispatch_service.create_session(
            self.db, self.ctx, self.carrier.id, [self.o1.id, self.o2.id], DISPATCH_DAY
        )

    def _import(self, rows=None):
        rows = rows or [
            {"order_reference": self.o1.order_number, "delivery_outcome": "ENTREGADO", "amount_collected": "100000"},
            {"order_reference": self.o2.order_number, "delivery_outcome": "NO ENTREGADO", "amount_collected": "0"},
        ]
        return dispatch_service.import_results(self.db, self.ctx, self.session.id, rows)

    def test_export_import_process_round_trip(self) -> None:
        content, _, _ = dispatch_service.export_session(self.db, self.ctx, self.session.id)
        self.assertEqual(len(content.decode("utf-8").lstrip("\ufeff").splitlines()), 3)
        self._import()

        settlement = reconciliation_service.process_settlement(self.db, self.ctx, self.session.id)

        self.assertEqual(settlement.expected_cash, Decimal("150000.00"))
        self.assertEqual(settlement.collected_cash, Decimal("100000.00"))
        self.assertEqual(settlement.discrepancy, Decimal("-50000.00"))
        self.assertEqual(settlement.status, SettlementStatus.WITH_ISSUES)
        self.assertEqual(settlement.settlement_code, "LIQ-18102026-01")
        self.assertEqual(settlement.settlement_date, DISPATCH_DAY)
        self.assertEqual(settlement.total_dispatched, 2)
        self.assertEqual(settlement.total_delivered, 1)
        self.assertEqual(settlement.total_failed, 1)
        self.assertEqual(len(settlement.orders), 2)

        self.db.refresh(self.session)
        self.assertEqual(self.session.status, DispatchSessionStatus.PROCESSED)
        self.assertEqual(self.session.settlement_id, settlement.id)

        failed_row = next(row for row in settlement.orders if row.order_id == self.o2.id)
        self.assertEqual(failed_row.failure_reason, "other")

    def test_discrepancy_is_derived_from_cash_fields(self) -> None:
        self._import()
        settlement = reconciliation_service.process_settlement(self.db, self.ctx, self.session.id)
        self.assertEqual(settlement.discrepancy, settlement.collected_cash - settlement.expected_cash)
        self.assertFalse(hasattr(DailySettlement.__table__.c, "discrepancy"))

    def test_carrier_fees_and_failed_attempt_fee(self) -> None:
        self.make_zone(self.carrier, "Centro", "20000")
        o3 = self.make_order(self.carrier, total="40000")
        o4 = self.make_order(self.carrier, total="60000")
        session = dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [o3.id, o4.id], date(2026, 10, 20))
        dispatch_service.import_results(self.db, self.ctx, session.id, [
            {"order_reference": o3.order_number, "delivery_outcome": "ENTREGADO"},
            {"order_reference": o4.order_number, "delivery_outcome": "RECHAZADO"},
        ])

        settlement = reconciliation_service.process_settlement(self.db, self.ctx, session.id)

        self.assertEqual(settlement.total_carrier_fees, Decimal("20000.00"))
        self.assertEqual(settlement.failed_attempt_fee, Decimal("10000.00"))
        self.assertEqual(settlement.net_receivable, Decimal("10000.00"))
        self.assertEqual(settlement.balance_due, Decimal("10000.00"))

    def test_reprocessing_updates_the_same_settlement(self) -> None:
        self._import()
        first = reconciliation_service.process_settlement(self.db, self.ctx, self.session.id)
        second = reconciliation_service.process_settlement(self.db, self.ctx, self.session.id)

        self.assertEqual(first.id, second.id)
        self.assertEqual(self.db.query(DailySettlement).count(), 1)
        self.assertEqual(self.db.query(SettlementOrder).count(), 2)
        self.assertEqual(second.expected_cash, Decimal("150000.00"))

    def test_second_session_same_day_merges_into_one_settlement(self) -> None:
        self._import()
        reconciliation_service.process_settlement(self.db, self.ctx, self.session.id)

        o3 = self.make_order(self.carrier, total="30000")
        session = dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [o3.id], DISPATCH_DAY)
        dispatch_service.import_results(self.db, self.ctx, session.id, [
            {"order_reference": o3.order_number, "delivery_outcome": "ENTREGADO"},
        ])
        merged = reconciliation_service.process_settlement(self.db, self.ctx, session.id)

        self.assertEqual(self.db.query(DailySettlement).count(), 1)
        self.assertEqual(merged.expected_cash, Decimal("180000.00"))
        self.assertEqual(merged.collected_cash, Decimal("130000.00"))
        self.assertEqual(merged.total_dispatched, 3)

    def test_session_must_be_imported(self) -> None:
        with self.assertRaises(ValidationError):
            reconciliation_service.process_settlement(self.db, self.ctx, self.session.id)
        self.assertEqual(self.db.query(DailySettlement).count(), 0)

    def test_orders_without_outcome_block_processing(self) -> None:
        self._import([
            {"order_reference": self.o1.order_number, "delivery_outcome": "ENTREGADO"},
        ])
        with self.assertRaises(ValidationError):
            reconciliation_service.process_settlement(self.db, self.ctx, self.session.id)

    def test_settlement_with_payments_is_final(self) -> None:
        self._import()
        settlement = reconciliation_service.process_settlement(self.db, self.ctx, self.session.id)
        settlement_service.mark_paid(self.db, self.ctx, settlement.id, Decimal("1000"), "transferencia")

        with self.assertRaises(ConflictError):
            reconciliation_service.process_settlement(self.db, self.ctx, self.session.id)


class ManualReconciliationTests(DatabaseTestCase):
    """Path B: operator ticks orders by hand."""

    def setUp(self) -> None:
        super().setUp()
        self.carrier = self.make_carrier()
        self.o3 = self.make_order(self.carrier, total="30000", status=OrderStatus.SHIPPED)

    def _reconcile(self, orders, collected, notes=None, confirm=False, day=DISPATCH_DAY):
        return reconciliation_service.process_manual_reconciliation(
            self.db,
            self.ctx,
            carrier_id=self.carrier.id,
            dispatch_date=day,
            orders=orders,
            total_amount_collected=Decimal(collected),
            discrepancy_notes=notes,
            confirm_discrepancy=confirm,
        )

    def test_zero_discrepancy_needs_no_confirmation(self) -> None:
        settlement = self._reconcile([{"order_id": self.o3.id, "delivered": True}], "30000")

        self.assertEqual(settlement.status, SettlementStatus.COMPLETED)
        self.assertEqual(settlement.expected_cash, Decimal("30000.00"))
        self.assertEqual(settlement.discrepancy, Decimal("0.00"))
        self.db.refresh(self.o3)
        self.assertEqual(self.o3.status, OrderStatus.DELIVERED)
        self.assertEqual(self.o3.amount_collected, Decimal("30000.00"))

    def test_discrepancy_without_notes_or_confirmation_is_rejected(self) -> None:
        with self.assertRaises(DiscrepancyConfirmationRequired) as ctx:
            self._reconcile([{"order_id": self.o3.id, "delivered": True}], "25000")

        self.assertEqual(ctx.exception.message, "discrepancy requires explanation")
        self.assertIsInstance(ctx.exception, ValidationError)
        self.assertEqual(self.db.query(DailySettlement).count(), 0)
        self.db.refresh(self.o3)
        self.assertEqual(self.o3.status, OrderStatus.SHIPPED)

    def test_discrepancy_with_notes_is_accepted(self) -> None:
        settlement = self._reconcile(
            [{"order_id": self.o3.id, "delivered": True}], "25000", notes="faltante reportado por el courier"
        )
        self.assertEqual(settlement.status, SettlementStatus.WITH_ISSUES)
        self.assertEqual(settlement.discrepancy, Decimal("-5000.00"))
        self.assertEqual(settlement.notes, "faltante reportado por el courier")

    def test_discrepancy_with_confirmation_is_accepted(self) -> None:
        settlement = self._reconcile([{"order_id": self.o3.id, "delivered": True}], "35000", confirm=True)
        self.assertEqual(settlement.status, SettlementStatus.WITH_ISSUES)
        self.assertEqual(settlement.discrepancy, Decimal("5000.00"))

    def test_failed_order_needs_a_reason(self) -> None:
        with self.assertRaises(ValidationError):
            self._reconcile([{"order_id": self.o3.id, "delivered": False}], "0")

    def test_failed_order_counts_toward_expected(self) -> None:
        o4 = self.make_order(self.carrier, total="20000", status=OrderStatus.SHIPPED)
        settlement = self._reconcile(
            [
                {"order_id": self.o3.id, "delivered": True},
                {"order_id": o4.id, "delivered": False, "failure_reason": "no_answer"},
            ],
            "30000",
            confirm=True,
        )
        self.assertEqual(settlement.expected_cash, Decimal("50000.00"))
        self.assertEqual(settlement.total_failed, 1)
        self.db.refresh(o4)
        self.assertEqual(o4.status, OrderStatus.DELIVERY_FAILED)

    def test_rerun_with_new_total_corrects_order_cash(self) -> None:
        self._reconcile([{"order_id": self.o3.id, "delivered": True}], "30000")
        settlement = self._reconcile(
            [{"order_id": self.o3.id, "delivered": True}], "28000", notes="cliente pag\u00f3 menos"
        )

        self.assertEqual(settlement.collected_cash, Decimal("28000.00"))
        self.db.refresh(self.o3)
        self.assertEqual(self.o3.amount_collected, Decimal("28000.00"))

    def test_failure_reason_and_notes_are_kept_per_order(self) -> None:
        o4 = self.make_order(self.carrier, total="20000", status=OrderStatus.SHIPPED)
        self._reconcile(
            [
                {"order_id": self.o3.id, "delivered": True, "notes": "  pago en efectivo  "},
                {"order_id": o4.id, "delivered": False, "failure_reason": "NO CONTESTA", "notes": "llamar ma\u00f1ana"},
            ],
            "30000",
            confirm=True,
        )

        rows = {row.order_id: row for row in self.db.query(SettlementOrder).all()}
        self.assertIsNone(rows[self.o3.id].failure_reason)
        self.assertEqual(rows[self.o3.id].notes, "pago en efectivo")
        self.assertEqual(rows[o4.id].failure_reason, "no_answer")
        self.assertEqual(rows[o4.id].notes, "llamar ma\u00f1ana")

    def test_same_key_upserts_one_settlement(self) -> None:
        o4 = self.make_order(self.carrier, total="20000", status=OrderStatus.SHIPPED)
        first = self._reconcile([{"order_id": self.o3.id, "delivered": True}], "30000")
        second = self._reconcile([{"order_id": o4.id, "delivered": True}], "20000")

        self.assertEqual(first.id, second.id)
        self.assertEqual(self.db.query(DailySettlement).count(), 1)
        self.assertEqual(second.expected_cash, Decimal("50000.00"))
        self.assertEqual(second.collected_cash, Decimal("50000.00"))

    def test_order_cannot_be_settled_twice(self) -> None:
        self._reconcile([{"order_id": self.o3.id, "delivered": True}], "30000")
        with self.assertRaises(ConflictError):
            self._reconcile([{"order_id": self.o3.id, "delivered": True}], "30000", day=date(2026, 10, 19))

    def test_order_in_active_dispatch_session_is_rejected(self) -> None:
        confirmed = self.make_order(self.carrier, total="10000")
        dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [confirmed.id], DISPATCH_DAY)
        with self.assertRaises(ConflictError):
            self._reconcile([{"order_id": confirmed.id, "delivered": True}], "10000")

    def test_order_of_another_carrier_is_rejected(self) -> None:
        other = self.make_carrier("Otro Courier")
        foreign = self.make_order(other, total="10000", status=OrderStatus.SHIPPED)
        with self.assertRaises(ValidationError):
            self._reconcile([{"order_id": foreign.id, "delivered": True}], "10000")

    def test_cash_without_delivered_orders_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self._reconcile(
                [{"order_id": self.o3.id, "delivered": False, "failure_reason": "customer_absent"}],
                "1000",
                confirm=True,
            )


class ShippedOrdersGroupedTests(DatabaseTestCase):
    def test_groups_by_carrier_and_shipped_date(self) -> None:
        carrier = self.make_carrier()
        self.make_order(carrier, total="10000", status=OrderStatus.SHIPPED, shipped_at=datetime(2026, 10, 17, 9))
        self.make_order(carrier, total="20000", status=OrderStatus.SHIPPED, shipped_at=datetime(2026, 10, 18, 9))
        self.make_order(
            carrier, total="5000", status=OrderStatus.SHIPPED, shipped_at=datetime(2026, 10, 18, 15),
            payment_method="tarjeta", payment_status="paid",
        )
        self.make_order(None, total="9999", status=OrderStatus.SHIPPED, shipped_at=datetime(2026, 10, 18, 9))

        groups = reconciliation_service.list_shipped_orders_grouped(self.db, self.ctx)

        self.assertEqual([group["dispatch_date"] for group in groups], [date(2026, 10, 18), date(2026, 10, 17)])
        newest = groups[0]
        self.assertEqual(newest["total_orders"], 2)
        self.assertEqual(newest["total_cod_expected"], Decimal("20000.00"))
        self.assertEqual(newest["total_prepaid"], 1)
        self.assertEqual(newest["failed_attempt_fee_percent"], 50)
