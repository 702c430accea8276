"""
Raw material services - stock ledger business logic

Usage:
    from rawmaterial.services import PurchaseOrderItemService, CleaningJobService

    # Receive 100 into a warehouse (quantityReceived is cumulative)
    PurchaseOrderItemService.update_purchase_order_item(
        item_id=1, quantity_received=100, status="Received", warehouse_id=1
    )

    # Send it to cleaning; stock at the source is reserved immediately
    CleaningJobService.create_cleaning_job(
        raw_material_id=1, from_warehouse_id=1, to_warehouse_id=2, quantity=100
    )
"""

# Base utilities
from rawmaterial.services.base_service import (
    ServiceError,
    InvalidRequestError,
    NotFoundError,
    ConservationViolationError,
    InsufficientStockError,
    TransactionFailedError,
    ledger_atomic,
    success_response,
    error_response,
    paginate_queryset,
    round_decimal,
    parse_quantity,
    generate_number,
    BaseService,
)

# Audit trail
from .log_service import TransactionLogService

# Master data
from .warehouse_service import WarehouseService
from .vendor_service import VendorService
from .product_service import RawMaterialProductService

# Ledger
from .stock_service import StockEntryService, CurrentStockService
from .purchase_service import PurchaseOrderService, PurchaseOrderItemService

# Workflow
from .cleaning_service import CleaningJobService
from .processing_service import ProcessingJobService
from .unfinished_service import UnfinishedStockService

# Reporting
from .dashboard_service import DashboardService
from .timeline_service import TimelineService
from .quality_service import RMQualityReportService


__all__ = [
    # Base
    "ServiceError",
    "InvalidRequestError",
    "NotFoundError",
    "ConservationViolationError",
    "InsufficientStockError",
    "TransactionFailedError",
    "ledger_atomic",
    "success_response",
    "error_response",
    "paginate_queryset",
    "round_decimal",
    "parse_quantity",
    "generate_number",
    "BaseService",

    # Audit trail
    "TransactionLogService",

    # Master data
    "WarehouseService",
    "VendorService",
    "RawMaterialProductService",

    # Ledger
    "StockEntryService",
    "CurrentStockService",
    "PurchaseOrderService",
    "PurchaseOrderItemService",

    # Workflow
    "CleaningJobService",
    "ProcessingJobService",
    "UnfinishedStockService",

    # Reporting
    "DashboardService",
    "TimelineService",
    "RMQualityReportService",
]
