"""
Dispatch session schemas.
"""
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from courier_ledger.models.dispatch_session import DispatchSessionStatus, DeliveryOutcome


class OrderToDispatchResponse(BaseModel):
    id: UUID
    order_number: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    delivery_zone: Optional[str] = None
    total_price: Optional[Decimal] = None
    payment_method: Optional[str] = None
    is_cod: bool
    carrier_id: Optional[UUID] = None
    carrier_fee: Decimal
    created_at: Optional[datetime] = None


class DispatchSessionCreate(BaseModel):
    carrier_id: UUID
    order_ids: List[UUID] = Field(min_length=1)
    dispatch_date: Optional[date] = None


class DispatchSessionOrderResponse(BaseModel):
    id: UUID
    order_id: UUID
    position: int
    order_number: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_zone: Optional[str] = None
    total_price: Optional[Decimal] = None
    payment_method: Optional[str] = None
    is_cod: bool
    carrier_fee: Decimal
    delivery_outcome: DeliveryOutcome
    amount_collected: Optional[Decimal] = None
    failure_reason: Optional[str] = None
    courier_notes: Optional[str] = None

    class Config:
        from_attributes = True


class DispatchSessionResponse(BaseModel):
    id: UUID
    carrier_id: UUID
    carrier_name: Optional[str] = None
    session_code: str
    dispatch_date: date
    status: DispatchSessionStatus
    total_orders: int
    total_cod_expected: Decimal
    total_prepaid: Decimal
    settlement_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    exported_at: Optional[datetime] = None
    imported_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DispatchSessionDetailResponse(DispatchSessionResponse):
    orders: List[DispatchSessionOrderResponse] = []


class DispatchSessionListResponse(BaseModel):
    items: List[DispatchSessionResponse]
    total: int


class DeliveryResultRow(BaseModel):
    order_reference: str
    delivery_outcome: Optional[str] = None
    amount_collected: Optional[Decimal] = None
    failure_reason: Optional[str] = None
    courier_notes: Optional[str] = None


class ImportResultsRequest(BaseModel):
    results: List[DeliveryResultRow]


class ImportConflict(BaseModel):
    order_reference: str
    order_id: UUID
    status: str
    requested: str


class ImportResultsResponse(BaseModel):
    session_id: UUID
    session_code: str
    total_rows: int
    matched: int
    delivered: int
    failed: int
    unmatched: List[str] = []
    conflicts: List[ImportConflict] = []
    warnings: List[str] = []
    total_collected: Decimal


class ShippedOrder(BaseModel):
    id: UUID
    order_number: str
    customer_name: Optional[str] = None
    delivery_zone: Optional[str] = None
    total_price: Optional[Decimal] = None
    is_cod: bool
    carrier_fee: Decimal
    shipped_at: Optional[datetime] = None


class ShippedOrderGroup(BaseModel):
    carrier_id: UUID
    carrier_name: Optional[str] = None
    dispatch_date: date
    failed_attempt_fee_percent: int
    total_orders: int
    total_cod_expected: Decimal
    total_prepaid: int
    orders: List[ShippedOrder]
