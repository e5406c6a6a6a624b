"""
Settlement schemas.
"""
from pydantic import BaseModel, Field, field_validator
from uuid import UUID
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict
from courier_ledger.models.dispatch_session import DeliveryOutcome
from courier_ledger.models.settlement import SettlementStatus


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ProcessSettlementRequest(BaseModel):
    notes: Optional[str] = None


class ManualReconciliationOrder(BaseModel):
    order_id: UUID
    delivered: bool
    failure_reason: Optional[str] = None
    notes: Optional[str] = None


class ManualReconciliationRequest(BaseModel):
    carrier_id: UUID
    dispatch_date: date
    orders: List[ManualReconciliationOrder] = Field(min_length=1)
    total_amount_collected: Decimal = Field(ge=0)
    discrepancy_notes: Optional[str] = None
    confirm_discrepancy: bool = False

    @field_validator("discrepancy_notes")
    @classmethod
    def strip_notes(cls, v):
        return _blank_to_none(v)


class SettlementOrderResponse(BaseModel):
    id: UUID
    order_id: UUID
    order_number: Optional[str] = None
    amount: Decimal
    amount_collected: Decimal
    delivery_outcome: DeliveryOutcome
    carrier_fee: Decimal
    failure_reason: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class SettlementResponse(BaseModel):
    id: UUID
    carrier_id: Optional[UUID] = None
    carrier_name: Optional[str] = None
    settlement_code: str
    settlement_date: date
    status: SettlementStatus
    expected_cash: Decimal
    collected_cash: Decimal
    discrepancy: Decimal
    total_dispatched: int
    total_delivered: int
    total_failed: int
    total_carrier_fees: Decimal
    failed_attempt_fee: Decimal
    net_receivable: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    settled_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SettlementDetailResponse(SettlementResponse):
    orders: List[SettlementOrderResponse] = []


class SettlementListResponse(BaseModel):
    items: List[SettlementResponse]
    total: int


class MarkPaidRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    method: str = Field(min_length=1)
    reference: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("method")
    @classmethod
    def method_not_blank(cls, v):
        if not v.strip():
            raise ValueError("method cannot be blank")
        return v.strip()


class SettlementCreate(BaseModel):
    settlement_date: date
    carrier_id: Optional[UUID] = None
    order_ids: List[UUID] = []
    notes: Optional[str] = None


class SettlementUpdate(BaseModel):
    notes: Optional[str] = None


class SettlementComplete(BaseModel):
    collected_cash: Decimal = Field(ge=0)
    notes: Optional[str] = None


class PendingByCarrierResponse(BaseModel):
    carrier_id: Optional[UUID] = None
    carrier_name: Optional[str] = None
    pending_count: int
    total_balance_due: Decimal
    total_discrepancy: Decimal
    oldest_settlement_date: date


class SettlementSummaryResponse(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_settlements: int
    by_status: Dict[str, int]
    total_expected: Decimal
    total_collected: Decimal
    total_discrepancy: Decimal
    total_carrier_fees: Decimal
    total_net_receivable: Decimal
    total_paid: Decimal
    total_balance_due: Decimal
