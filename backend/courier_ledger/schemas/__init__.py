from .dispatch_session import (
    OrderToDispatchResponse,
    DispatchSessionCreate,
    DispatchSessionResponse,
    DispatchSessionDetailResponse,
    DispatchSessionListResponse,
    DeliveryResultRow,
    ImportResultsRequest,
    ImportResultsResponse,
    ShippedOrderGroup,
)
from .settlement import (
    ProcessSettlementRequest,
    ManualReconciliationRequest,
    SettlementResponse,
    SettlementDetailResponse,
    SettlementListResponse,
    MarkPaidRequest,
    SettlementCreate,
    SettlementUpdate,
    SettlementComplete,
    PendingByCarrierResponse,
    SettlementSummaryResponse,
)
from .zone import ZoneCreate, ZoneBulkRequest, ZoneBulkResponse, ZoneResponse, ZoneRateResponse

__all__ = [
    "OrderToDispatchResponse",
    "DispatchSessionCreate",
    "DispatchSessionResponse",
    "DispatchSessionDetailResponse",
    "DispatchSessionListResponse",
    "DeliveryResultRow",
    "ImportResultsRequest",
    "ImportResultsResponse",
    "ShippedOrderGroup",
    "ProcessSettlementRequest",
    "ManualReconciliationRequest",
    "SettlementResponse",
    "SettlementDetailResponse",
    "SettlementListResponse",
    "MarkPaidRequest",
    "SettlementCreate",
    "SettlementUpdate",
    "SettlementComplete",
    "PendingByCarrierResponse",
    "SettlementSummaryResponse",
    "ZoneCreate",
    "ZoneBulkRequest",
    "ZoneBulkResponse",
    "ZoneResponse",
    "ZoneRateResponse",
]
