"""
Request-scoped dependencies: tenant resolution and module access.

The auth layer in front of this service authenticates the user and forwards
the store, user and role as headers.
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from courier_ledger.db.database import get_db
from courier_ledger.errors import NotFoundError, PermissionDeniedError
from courier_ledger.models import Store
from courier_ledger.services.tenant import TenantContext

logger = logging.getLogger(__name__)

REQUIRED_PLAN_FEATURE = "warehouse"

# Roles that may use the carriers module (dispatch, settlements, zones)
CARRIERS_MODULE_ROLES = {"owner", "admin", "logistics"}


def get_tenant(
    x_store_id: Optional[UUID] = Header(None),
    x_user_id: Optional[UUID] = Header(None),
    x_user_role: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> TenantContext:
    if x_store_id is None:
        raise PermissionDeniedError("Missing store context")

    store = db.query(Store).filter(Store.id == x_store_id).first()
    if not store:
        raise NotFoundError(f"Store {x_store_id} not found")
    if not store.has_feature(REQUIRED_PLAN_FEATURE):
        logger.warning("Store %s tried to use settlements without the %s feature", store.id, REQUIRED_PLAN_FEATURE)
        raise PermissionDeniedError(f"Your plan does not include the '{REQUIRED_PLAN_FEATURE}' feature")
    if x_user_role and x_user_role.strip().lower() not in CARRIERS_MODULE_ROLES:
        raise PermissionDeniedError(f"Role '{x_user_role}' cannot access the carriers module")

    return TenantContext(store_id=store.id, user_id=x_user_id)
