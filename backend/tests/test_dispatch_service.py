from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from support import DatabaseTestCase

from courier_ledger.errors import ConflictError, NotFoundError, ValidationError
from courier_ledger.models import DeliveryOutcome, DispatchSession, DispatchSessionStatus, OrderStatus
from courier_ledger.services import dispatch_service
from courier_ledger.services.tenant import TenantContext

DISPATCH_DAY = date(2026, 10, 18)


class DispatchSessionCreateTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.carrier = self.make_carrier()
        self.make_zone(self.carrier, "Centro", "25000")

    def test_create_snapshots_orders_and_keeps_them_confirmed(self) -> None:
        cod = self.make_order(self.carrier, total="100000")
        prepaid = self.make_order(self.carrier, total="50000", payment_method="tarjeta", payment_status="paid")

        session = dispatch_service.create_session(
            self.db, self.ctx, self.carrier.id, [cod.id, prepaid.id, cod.id], DISPATCH_DAY
        )

        self.assertEqual(session.session_code, "DISP-18102026-01")
        self.assertEqual(session.status, DispatchSessionStatus.OPEN)
        self.assertEqual(session.total_orders, 2)
        self.assertEqual(session.total_cod_expected, Decimal("100000.00"))
        self.assertEqual(session.total_prepaid, Decimal("50000.00"))
        self.assertEqual(session.created_by, self.ctx.user_id)
        self.assertEqual([item.order_id for item in session.orders], [cod.id, prepaid.id])
        self.assertTrue(session.orders[0].is_cod)
        self.assertFalse(session.orders[1].is_cod)
        self.assertEqual(session.orders[0].carrier_fee, Decimal("25000.00"))
        self.db.refresh(cod)
        self.assertEqual(cod.status, OrderStatus.CONFIRMED)

    def test_codes_increment_per_store_per_day(self) -> None:
        first = dispatch_service.create_session(
            self.db, self.ctx, self.carrier.id, [self.make_order(self.carrier).id], DISPATCH_DAY
        )
        second = dispatch_service.create_session(
            self.db, self.ctx, self.carrier.id, [self.make_order(self.carrier).id], DISPATCH_DAY
        )
        next_day = dispatch_service.create_session(
            self.db, self.ctx, self.carrier.id, [self.make_order(self.carrier).id], date(2026, 10, 19)
        )
        self.assertEqual(first.session_code, "DISP-18102026-01")
        self.assertEqual(second.session_code, "DISP-18102026-02")
        self.assertEqual(next_day.session_code, "DISP-19102026-01")

    def test_order_in_active_session_rejects_whole_batch(self) -> None:
        taken = self.make_order(self.carrier)
        fresh = self.make_order(self.carrier)
        dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [taken.id], DISPATCH_DAY)

        with self.assertRaises(ConflictError):
            dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [fresh.id, taken.id], DISPATCH_DAY)
        self.assertEqual(self.db.query(DispatchSession).count(), 1)

    def test_unconfirmed_order_is_rejected(self) -> None:
        pending = self.make_order(self.carrier, status=OrderStatus.PENDING)
        with self.assertRaises(ValidationError):
            dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [pending.id], DISPATCH_DAY)

    def test_unknown_order_is_rejected(self) -> None:
        with self.assertRaises(NotFoundError):
            dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [uuid.uuid4()], DISPATCH_DAY)

    def test_inactive_carrier_is_rejected(self) -> None:
        inactive = self.make_carrier("Retirado", active=False)
        order = self.make_order(inactive)
        with self.assertRaises(ValidationError):
            dispatch_service.create_session(self.db, self.ctx, inactive.id, [order.id], DISPATCH_DAY)

    def test_empty_order_list_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [], DISPATCH_DAY)

    def test_orders_to_dispatch_excludes_active_sessions(self) -> None:
        dispatched = self.make_order(self.carrier)
        waiting = self.make_order(self.carrier)
        self.make_order(self.carrier, status=OrderStatus.PENDING)
        dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [dispatched.id], DISPATCH_DAY)

        result = dispatch_service.list_orders_to_dispatch(self.db, self.ctx, self.carrier.id)
        self.assertEqual([row["id"] for row in result], [waiting.id])
        self.assertEqual(result[0]["carrier_fee"], Decimal("25000.00"))


class DispatchSessionExportImportTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.carrier = self.make_carrier()
        self.o1 = self.make_order(self.carrier, total="100000")
        self.o2 = self.make_order(self.carrier, total="50000")
        self.session = dispatch_service.create_session(
            self.db, self.ctx, self.carrier.id, [self.o1.id, self.o2.id], DISPATCH_DAY
        )

    def test_export_csv_has_bom_header_and_one_row_per_order(self) -> None:
        content, filename, media_type = dispatch_service.export_session(self.db, self.ctx, self.session.id)
        text = content.decode("utf-8")

        self.assertTrue(text.startswith("\ufeff"))
        lines = text.lstrip("\ufeff").splitlines()
        self.assertEqual(len(lines), 3)
        self.assertTrue(lines[0].startswith("NroReferencia,"))
        self.assertIn("ESTADO_ENTREGA", lines[0])
        self.assertIn(self.o1.order_number, lines[1])
        self.assertEqual(filename, "DISP-18102026-01.csv")
        self.assertTrue(media_type.startswith("text/csv"))

        self.db.refresh(self.session)
        self.assertEqual(self.session.status, DispatchSessionStatus.EXPORTED)
        self.assertIsNotNone(self.session.exported_at)

    def test_export_xlsx(self) -> None:
        content, filename, media_type = dispatch_service.export_session(self.db, self.ctx, self.session.id, "xlsx")
        self.assertTrue(content.startswith(b"PK"))
        self.assertEqual(filename, "DISP-18102026-01.xlsx")
        self.assertEqual(media_type, dispatch_service.XLSX_MEDIA_TYPE)

    def test_export_is_store_scoped(self) -> None:
        with self.assertRaises(NotFoundError):
            dispatch_service.export_session(self.db, TenantContext(store_id=uuid.uuid4()), self.session.id)

    def test_export_rejects_unknown_format(self) -> None:
        with self.assertRaises(ValidationError):
            dispatch_service.export_session(self.db, self.ctx, self.session.id, "pdf")

    def test_import_results_partial_success(self) -> None:
        summary = dispatch_service.import_results(self.db, self.ctx, self.session.id, [
            {"order_reference": self.o1.order_number, "delivery_outcome": "ENTREGADO", "amount_collected": None},
            {"order_reference": self.o2.order_number, "delivery_outcome": "NO ENTREGADO",
             "failure_reason": "no contesta"},
            {"order_reference": "#9999", "delivery_outcome": "ENTREGADO"},
        ])

        self.assertEqual(summary["matched"], 2)
        self.assertEqual(summary["delivered"], 1)
        self.assertEqual(summary["failed"], 1)
        self.assertEqual(summary["unmatched"], ["#9999"])
        self.assertEqual(summary["conflicts"], [])
        self.assertEqual(summary["total_collected"], Decimal("100000.00"))

        self.db.refresh(self.session)
        self.assertEqual(self.session.status, DispatchSessionStatus.IMPORTED)
        first, second = self.session.orders
        self.assertEqual(first.delivery_outcome, DeliveryOutcome.DELIVERED)
        self.assertEqual(first.amount_collected, Decimal("100000.00"))
        self.assertEqual(second.delivery_outcome, DeliveryOutcome.FAILED)
        self.assertEqual(second.failure_reason, "no_answer")

        self.db.refresh(self.o1)
        self.db.refresh(self.o2)
        self.assertEqual(self.o1.status, OrderStatus.DELIVERED)
        self.assertEqual(self.o2.status, OrderStatus.DELIVERY_FAILED)

    def test_reimport_is_idempotent(self) -> None:
        rows = [
            {"order_reference": self.o1.order_number, "delivery_outcome": "ENTREGADO", "amount_collected": "100000"},
            {"order_reference": self.o2.order_number, "delivery_outcome": "DEVUELTO"},
        ]
        dispatch_service.import_results(self.db, self.ctx, self.session.id, rows)
        again = dispatch_service.import_results(self.db, self.ctx, self.session.id, rows)

        self.assertEqual(again["matched"], 2)
        self.assertEqual(again["conflicts"], [])
        self.db.refresh(self.session)
        self.assertEqual(self.session.orders[1].delivery_outcome, DeliveryOutcome.RETURNED)

    def test_reimport_corrects_collected_amount_on_order(self) -> None:
        row = {"order_reference": self.o1.order_number, "delivery_outcome": "ENTREGADO", "amount_collected": "100000"}
        dispatch_service.import_results(self.db, self.ctx, self.session.id, [row])
        corrected = dispatch_service.import_results(
            self.db, self.ctx, self.session.id, [dict(row, amount_collected="90000")]
        )

        self.assertEqual(corrected["matched"], 1)
        self.assertEqual(corrected["conflicts"], [])
        self.db.refresh(self.o1)
        self.db.refresh(self.session)
        self.assertEqual(self.o1.status, OrderStatus.DELIVERED)
        self.assertEqual(self.o1.amount_collected, Decimal("90000.00"))
        self.assertEqual(self.session.orders[0].amount_collected, Decimal("90000.00"))

    def test_cod_amount_different_from_total_is_warned(self) -> None:
        summary = dispatch_service.import_results(self.db, self.ctx, self.session.id, [
            {"order_reference": self.o1.order_number, "delivery_outcome": "ENTREGADO", "amount_collected": "95000"},
            {"order_reference": self.o2.order_number, "delivery_outcome": "ENTREGADO", "amount_collected": "50000"},
        ])

        self.assertEqual(summary["matched"], 2)
        self.assertEqual(summary["total_collected"], Decimal("145000.00"))
        self.assertEqual(len(summary["warnings"]), 1)
        self.assertIn(self.o1.order_number, summary["warnings"][0])

    def test_order_moved_elsewhere_is_reported_as_conflict(self) -> None:
        self.o2.status = OrderStatus.DELIVERED
        self.db.commit()

        summary = dispatch_service.import_results(self.db, self.ctx, self.session.id, [
            {"order_reference": self.o2.order_number, "delivery_outcome": "RECHAZADO"},
        ])
        self.assertEqual(summary["matched"], 0)
        self.assertEqual(len(summary["conflicts"]), 1)
        self.assertEqual(summary["conflicts"][0]["status"], "delivered")

    def test_prepaid_cash_is_recorded_as_zero_with_warning(self) -> None:
        prepaid = self.make_order(self.carrier, total="70000", payment_method="tarjeta", payment_status="paid")
        session = dispatch_service.create_session(self.db, self.ctx, self.carrier.id, [prepaid.id], DISPATCH_DAY)

        summary = dispatch_service.import_results(self.db, self.ctx, session.id, [
            {"order_reference": prepaid.order_number, "delivery_outcome": "ENTREGADO", "amount_collected": "70000"},
        ])
        self.assertEqual(summary["total_collected"], Decimal("0.00"))
        self.assertEqual(len(summary["warnings"]), 1)

    def test_import_csv_with_bom_and_spanish_headers(self) -> None:
        sheet = (
            "\ufeffNroReferencia;NOMBRE Y APELLIDO;ESTADO_ENTREGA;MONTO_COBRADO;MOTIVO_NO_ENTREGA;OBSERVACIONES\n"
            f"{self.o1.order_number};Cliente;ENTREGADO;100000;;dejado en porteria\n"
            f"{self.o2.order_number};Cliente;NO ENTREGADO;;Direccion incorrecta;\n"
        )
        summary = dispatch_service.import_results_csv(self.db, self.ctx, self.session.id, sheet.encode("utf-8"))

        self.assertEqual(summary["matched"], 2)
        self.assertEqual(summary["delivered"], 1)
        self.assertEqual(summary["failed"], 1)
        self.db.refresh(self.session)
        self.assertEqual(self.session.orders[0].courier_notes, "dejado en porteria")
        self.assertEqual(self.session.orders[1].failure_reason, "wrong_address")

    def test_import_csv_without_reference_column_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            dispatch_service.import_results_csv(self.db, self.ctx, self.session.id, b"ESTADO,MONTO\nENTREGADO,1\n")

    def test_import_into_processed_session_is_rejected(self) -> None:
        self.session.status = DispatchSessionStatus.PROCESSED
        self.db.commit()
        with self.assertRaises(ConflictError):
            dispatch_service.import_results(self.db, self.ctx, self.session.id, [])
