"""
Tenant context passed explicitly into every service call.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID


@dataclass(frozen=True)
class TenantContext:
    store_id: UUID
    user_id: Optional[UUID] = None
