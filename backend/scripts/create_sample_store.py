"""
Script to create a sample store, carrier, zones and confirmed orders for testing.
"""
import sys
import os
from decimal import Decimal
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from courier_ledger.db.database import SessionLocal
from courier_ledger.models import Store, Carrier, CarrierZone, Order, OrderStatus

SAMPLE_ZONES = {
    "Asuncion": Decimal("25000"),
    "San Lorenzo": Decimal("30000"),
    "Luque": Decimal("35000"),
}


def create_sample_store():
    db = SessionLocal()
    try:
        existing = db.query(Store).filter(Store.name == "Tienda Demo").first()
        if existing:
            print(f"Store 'Tienda Demo' already exists with ID: {existing.id}")
            return

        store = Store(name="Tienda Demo", plan_features=["warehouse"])
        db.add(store)
        db.flush()

        carrier = Carrier(store_id=store.id, name="Moto Express", phone="+595981000000", failed_attempt_fee_percent=50)
        db.add(carrier)
        db.flush()

        for zone_name, rate in SAMPLE_ZONES.items():
            db.add(CarrierZone(store_id=store.id, carrier_id=carrier.id, zone_name=zone_name, rate=rate))

        for number, (zone_name, total, method) in enumerate([
            ("Asuncion", Decimal("150000"), "efectivo"),
            ("San Lorenzo", Decimal("89000"), "efectivo"),
            ("Luque", Decimal("210000"), "tarjeta"),
        ], start=1001):
            db.add(Order(
                store_id=store.id,
                order_number=f"#{number}",
                customer_name=f"Cliente {number}",
                customer_phone="+595981111111",
                shipping_address=f"Calle {number}",
                delivery_zone=zone_name,
                total_price=total,
                payment_method=method,
                payment_status="paid" if method == "tarjeta" else "pending",
                carrier_id=carrier.id,
                status=OrderStatus.CONFIRMED,
            ))

        db.commit()
        print(f"Created store: {store.name} (ID: {store.id})")
        print(f"Created carrier: {carrier.name} (ID: {carrier.id})")
    except Exception as e:
        print(f"Error: {e}")
        db.rollback()
    finally:
        db.close()

if __name__ == "__main__":
    create_sample_store()
