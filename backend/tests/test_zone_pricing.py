from __future__ import annotations

import uuid
from decimal import Decimal

from support import DatabaseTestCase

from courier_ledger.errors import NotFoundError, ValidationError
from courier_ledger.models import CarrierZone
from courier_ledger.services.tenant import TenantContext
from courier_ledger.services.zone_pricing import (
    bulk_upsert_zones,
    delete_zone,
    list_zones,
    rate_for,
    upsert_zone,
    zone_rate_map,
)


class ZonePricingTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.carrier = self.make_carrier()
        self.make_zone(self.carrier, "Centro", "25000")

    def test_rate_for_exact_zone_name(self) -> None:
        self.assertEqual(rate_for(self.db, self.ctx, self.carrier.id, "Centro"), Decimal("25000.00"))

    def test_rate_for_is_case_sensitive(self) -> None:
        with self.assertRaises(NotFoundError):
            rate_for(self.db, self.ctx, self.carrier.id, "centro")

    def test_rate_for_ignores_inactive_zones(self) -> None:
        self.make_zone(self.carrier, "Luque", "35000", active=False)
        with self.assertRaises(NotFoundError):
            rate_for(self.db, self.ctx, self.carrier.id, "Luque")
        self.assertNotIn("Luque", zone_rate_map(self.db, self.ctx, self.carrier.id))

    def test_rate_for_is_scoped_to_the_store(self) -> None:
        other = TenantContext(store_id=uuid.uuid4())
        with self.assertRaises(NotFoundError):
            rate_for(self.db, other, self.carrier.id, "Centro")

    def test_upsert_zone_updates_existing_rate(self) -> None:
        zone = upsert_zone(self.db, self.ctx, self.carrier.id, "Centro", Decimal("27500"))
        self.assertEqual(zone.rate, Decimal("27500.00"))
        self.assertEqual(self.db.query(CarrierZone).count(), 1)

    def test_upsert_zone_rejects_negative_rate(self) -> None:
        with self.assertRaises(ValidationError):
            upsert_zone(self.db, self.ctx, self.carrier.id, "Norte", Decimal("-1"))

    def test_bulk_upsert_counts_created_and_updated(self) -> None:
        result = bulk_upsert_zones(
            self.db,
            self.ctx,
            self.carrier.id,
            [
                {"zone_name": "Centro", "rate": Decimal("26000")},
                {"zone_name": "San Lorenzo", "rate": Decimal("30000")},
                {"zone_name": "Luque", "rate": Decimal("35000"), "zone_code": "LUQ"},
            ],
        )
        self.assertEqual(result, {"created": 2, "updated": 1})
        names = [zone.zone_name for zone in list_zones(self.db, self.ctx, self.carrier.id)]
        self.assertEqual(names, ["Centro", "Luque", "San Lorenzo"])

    def test_delete_zone(self) -> None:
        zone = self.make_zone(self.carrier, "Norte", "40000")
        delete_zone(self.db, self.ctx, zone.id)
        with self.assertRaises(NotFoundError):
            delete_zone(self.db, self.ctx, zone.id)
