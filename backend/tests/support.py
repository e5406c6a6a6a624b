from __future__ import annotations

import os
import unittest
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

# Point the application engine at SQLite before anything imports it
os.environ.setdefault("DATABASE_URL", "sqlite://")

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from courier_ledger.db.database import Base
from courier_ledger.models import Carrier, CarrierZone, Order, OrderStatus, Store
from courier_ledger.services.tenant import TenantContext


def make_engine():
    """In-memory SQLite shared across threads, with real SAVEPOINT support."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


class DatabaseTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        self.db = self.SessionLocal()
        self.store = Store(name="Tienda Demo", plan_features=["warehouse"])
        self.db.add(self.store)
        self.db.commit()
        self.ctx = TenantContext(store_id=self.store.id, user_id=uuid.uuid4())
        self._order_seq = 1000

    def tearDown(self) -> None:
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def make_carrier(self, name: str = "Moto Express", fee_percent: Optional[int] = None, active: bool = True) -> Carrier:
        carrier = Carrier(
            store_id=self.store.id,
            name=name,
            is_active=active,
            failed_attempt_fee_percent=fee_percent,
        )
        self.db.add(carrier)
        self.db.commit()
        return carrier

    def make_zone(self, carrier: Carrier, zone_name: str, rate: str, active: bool = True) -> CarrierZone:
        zone = CarrierZone(
            store_id=self.store.id,
            carrier_id=carrier.id,
            zone_name=zone_name,
            rate=Decimal(rate),
            is_active=active,
        )
        self.db.add(zone)
        self.db.commit()
        return zone

    def make_order(
        self,
        carrier: Optional[Carrier],
        total: Optional[str] = "100000",
        status: OrderStatus = OrderStatus.CONFIRMED,
        payment_method: str = "efectivo",
        payment_status: str = "pending",
        zone: Optional[str] = "Centro",
        store_id=None,
        shipped_at: Optional[datetime] = None,
    ) -> Order:
        self._order_seq += 1
        order = Order(
            store_id=store_id or self.store.id,
            order_number=f"#{self._order_seq}",
            customer_name=f"Cliente {self._order_seq}",
            customer_phone="+595981000000",
            shipping_address=f"Calle {self._order_seq}",
            delivery_zone=zone,
            total_price=Decimal(total) if total is not None else None,
            payment_method=payment_method,
            payment_status=payment_status,
            carrier_id=carrier.id if carrier else None,
            status=status,
            shipped_at=shipped_at,
        )
        self.db.add(order)
        self.db.commit()
        return order
