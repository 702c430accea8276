"""
Raw material ledger API

All endpoints live under /raw/ and require a bearer token. Request and
response bodies use camelCase keys; services take snake_case arguments.
"""

import logging
from typing import Dict, Any

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import APIView

from rawmaterial.services import (
    ServiceError, InvalidRequestError, error_response,
    WarehouseService, VendorService, RawMaterialProductService,
    PurchaseOrderService, PurchaseOrderItemService,
    StockEntryService, CurrentStockService,
    CleaningJobService, ProcessingJobService, UnfinishedStockService,
    DashboardService, TimelineService, RMQualityReportService,
    TransactionLogService,
)

logger = logging.getLogger(__name__)


def error(message: str, code: str, status_code: int, details: dict = None) -> Response:
    return Response(error_response(message, code, details), status=status_code)


def handle_service_error(e: Exception) -> Response:
    if isinstance(e, ServiceError):
        if e.status_code >= 500:
            logger.error("%s: %s", e.code, e.message)
        return error(e.message, e.code, e.status_code, e.details)
    elif isinstance(e, APIException):
        code = "INVALID_REQUEST" if e.status_code == 400 else str(e.default_code).upper()
        return error(str(e.detail), code, e.status_code)
    else:
        logger.exception("Unhandled error in raw material API")
        return error("Internal server error", "SERVER_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR)


def pick(data: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    """Translate the camelCase keys present in ``data`` to service kwargs."""
    return {
        target: data[source]
        for source, target in mapping.items()
        if source in data
    }


class BaseRawView(APIView):

    def get_body(self, request) -> Dict[str, Any]:
        data = request.data
        if not isinstance(data, dict):
            raise InvalidRequestError("Request body must be a JSON object")
        return data

    def get_user_id(self, request):
        if request.user and request.user.is_authenticated:
            return request.user.id
        return None

    def query_int(self, request, name: str, default: int = None):
        value = request.query_params.get(name)
        if value in (None, ""):
            return default
        try:
            return int(value)
        except ValueError:
            raise InvalidRequestError(f"{name} must be an integer", name)

    def query_bool(self, request, name: str):
        value = request.query_params.get(name)
        if value in (None, ""):
            return None
        return value.lower() in ("1", "true", "yes")

    def success(self, data: dict, status_code: int = 200) -> Response:
        return Response(data, status=status_code)


# ==================== WAREHOUSES ====================

WAREHOUSE_FIELDS = {"name": "name", "location": "location"}


class WarehouseListView(BaseRawView):

    def get(self, request):
        try:
            result = WarehouseService.list(search=request.query_params.get("search"))
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_body(request)
            result = WarehouseService.create(
                name=data.get("name"),
                location=data.get("location", ""),
                user_id=self.get_user_id(request),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class WarehouseDetailView(BaseRawView):

    def get(self, request, warehouse_id):
        try:
            return self.success(WarehouseService.get(warehouse_id))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, warehouse_id):
        try:
            data = self.get_body(request)
            result = WarehouseService.update(
                warehouse_id, user_id=self.get_user_id(request), **pick(data, WAREHOUSE_FIELDS)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, warehouse_id):
        try:
            return self.success(WarehouseService.delete(warehouse_id, user_id=self.get_user_id(request)))
        except Exception as e:
            return handle_service_error(e)


# ==================== VENDORS ====================

VENDOR_FIELDS = {
    "name": "name",
    "address": "address",
    "contactPerson": "contact_person",
    "contactNumber": "contact_number",
    "email": "email",
    "gstin": "gstin",
}

BANK_FIELDS = {
    "bankName": "bank_name",
    "accountHolder": "account_holder",
    "accountNo": "account_no",
    "ifscCode": "ifsc_code",
}


def vendor_kwargs(data: Dict[str, Any]) -> Dict[str, Any]:
    kwargs = pick(data, VENDOR_FIELDS)
    kwargs.update(pick(data, BANK_FIELDS))
    bank_details = data.get("bankDetails")
    if isinstance(bank_details, dict):
        kwargs.update(pick(bank_details, BANK_FIELDS))
    return kwargs


class VendorListView(BaseRawView):

    def get(self, request):
        try:
            result = VendorService.list(
                enabled=self.query_bool(request, "enabled"),
                search=request.query_params.get("search"),
                page=self.query_int(request, "page", 1),
                per_page=self.query_int(request, "perPage", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_body(request)
            kwargs = vendor_kwargs(data)
            if "enabled" in data:
                kwargs["enabled"] = bool(data["enabled"])
            result = VendorService.create(user_id=self.get_user_id(request), **kwargs)
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class VendorDetailView(BaseRawView):

    def get(self, request, vendor_id):
        try:
            return self.success(VendorService.get(vendor_id))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, vendor_id):
        try:
            data = self.get_body(request)
            result = VendorService.update(
                vendor_id, user_id=self.get_user_id(request), **vendor_kwargs(data)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class VendorStatusView(BaseRawView):

    def patch(self, request, vendor_id):
        try:
            data = self.get_body(request)
            result = VendorService.set_status(
                vendor_id, data.get("enabled"), user_id=self.get_user_id(request)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== PRODUCTS ====================

PRODUCT_FIELDS = {
    "skuCode": "sku_code",
    "name": "name",
    "category": "category",
    "unitOfMeasurement": "unit_of_measurement",
    "minReorderLevel": "min_reorder_level",
    "vendorId": "vendor_id",
}


class ProductListView(BaseRawView):

    def get(self, request):
        try:
            result = RawMaterialProductService.list(
                category=request.query_params.get("category"),
                vendor_id=self.query_int(request, "vendorId"),
                search=request.query_params.get("search"),
                page=self.query_int(request, "page", 1),
                per_page=self.query_int(request, "perPage", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_body(request)
            result = RawMaterialProductService.create(
                sku_code=data.get("skuCode"),
                name=data.get("name"),
                unit_of_measurement=data.get("unitOfMeasurement"),
                category=data.get("category", ""),
                min_reorder_level=data.get("minReorderLevel", 0),
                vendor_id=data.get("vendorId"),
                user_id=self.get_user_id(request),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class ProductDetailView(BaseRawView):

    def get(self, request, product_id):
        try:
            return self.success(RawMaterialProductService.get(product_id))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, product_id):
        try:
            data = self.get_body(request)
            result = RawMaterialProductService.update(
                product_id, user_id=self.get_user_id(request), **pick(data, PRODUCT_FIELDS)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, product_id):
        try:
            return self.success(
                RawMaterialProductService.delete(product_id, user_id=self.get_user_id(request))
            )
        except Exception as e:
            return handle_service_error(e)


# ==================== PURCHASE ORDERS ====================

PO_ITEM_FIELDS = {
    "rawMaterialId": "raw_material_id",
    "quantityOrdered": "quantity_ordered",
    "rate": "rate",
}


class PurchaseOrderListView(BaseRawView):

    def get(self, request):
        try:
            result = PurchaseOrderService.list(
                vendor_id=self.query_int(request, "vendorId"),
                status=request.query_params.get("status"),
                search=request.query_params.get("search"),
                page=self.query_int(request, "page", 1),
                per_page=self.query_int(request, "perPage", 20),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_body(request)
            items = data.get("items")
            if isinstance(items, list):
                items = [
                    pick(item, PO_ITEM_FIELDS) if isinstance(item, dict) else item
                    for item in items
                ]
            result = PurchaseOrderService.create_purchase_order(
                vendor_id=data.get("vendorId"),
                order_date=data.get("orderDate"),
                expected_date=data.get("expectedDate"),
                items=items,
                user_id=self.get_user_id(request),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class PurchaseOrderDetailView(BaseRawView):

    def get(self, request, po_id):
        try:
            return self.success(PurchaseOrderService.get(po_id))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, po_id):
        try:
            data = self.get_body(request)
            result = PurchaseOrderService.update_purchase_order(
                po_id,
                status=data.get("status"),
                expected_date=data.get("expectedDate"),
                user_id=self.get_user_id(request),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class PurchaseOrderItemView(BaseRawView):

    def put(self, request, item_id):
        try:
            data = self.get_body(request)
            result = PurchaseOrderItemService.update_purchase_order_item(
                item_id,
                quantity_received=data.get("quantityReceived"),
                status=data.get("status"),
                warehouse_id=data.get("warehouseId"),
                batch_number=data.get("batchNumber"),
                expiry_date=data.get("expiryDate"),
                user_id=self.get_user_id(request),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== STOCK ====================

STOCK_ENTRY_FIELDS = {
    "status": "status",
    "reasonCode": "reason_code",
    "batchNumber": "batch_number",
    "expiryDate": "expiry_date",
    "quantity": "quantity",
}


class StockEntryListView(BaseRawView):

    def get(self, request):
        try:
            result = StockEntryService.list(
                raw_material_id=self.query_int(request, "rawMaterialId"),
                warehouse_id=self.query_int(request, "warehouseId"),
                entry_type=request.query_params.get("entryType"),
                status=request.query_params.get("status"),
                reference_id=request.query_params.get("referenceId"),
                page=self.query_int(request, "page", 1),
                per_page=self.query_int(request, "perPage", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_body(request)
            result = StockEntryService.post_entry(
                raw_material_id=data.get("rawMaterialId"),
                warehouse_id=data.get("warehouseId"),
                quantity=data.get("quantity"),
                entry_type=data.get("entryType"),
                reference_id=data.get("referenceId", ""),
                status=data.get("status", ""),
                reason_code=data.get("reasonCode"),
                batch_number=data.get("batchNumber"),
                expiry_date=data.get("expiryDate"),
                user_id=self.get_user_id(request),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class StockEntryDetailView(BaseRawView):

    def get(self, request, entry_id):
        try:
            return self.success(StockEntryService.get(entry_id))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, entry_id):
        try:
            data = self.get_body(request)
            result = StockEntryService.update_stock_entry(
                entry_id, user_id=self.get_user_id(request), **pick(data, STOCK_ENTRY_FIELDS)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class CurrentStockView(BaseRawView):

    def get(self, request):
        try:
            result = CurrentStockService.list_balances(
                raw_material_id=self.query_int(request, "rawMaterialId"),
                warehouse_id=self.query_int(request, "warehouseId"),
                include_empty=self.query_bool(request, "includeEmpty") is not False,
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class StockReconcileView(BaseRawView):

    def get(self, request):
        try:
            result = CurrentStockService.reconcile(
                raw_material_id=self.query_int(request, "rawMaterialId"),
                warehouse_id=self.query_int(request, "warehouseId"),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== CLEANING ====================

class CleaningJobListView(BaseRawView):

    def get(self, request):
        try:
            result = CleaningJobService.list(
                status=request.query_params.get("status"),
                raw_material_id=self.query_int(request, "rawMaterialId"),
                warehouse_id=self.query_int(request, "warehouseId"),
                search=request.query_params.get("search"),
                page=self.query_int(request, "page", 1),
                per_page=self.query_int(request, "perPage", 20),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_body(request)
            result = CleaningJobService.create_cleaning_job(
                raw_material_id=data.get("rawMaterialId"),
                from_warehouse_id=data.get("fromWarehouseId"),
                to_warehouse_id=data.get("toWarehouseId"),
                quantity=data.get("quantity"),
                status=data.get("status"),
                started_at=data.get("startedAt"),
                finished_at=data.get("finishedAt"),
                user_id=self.get_user_id(request),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class CleaningJobDetailView(BaseRawView):

    def get(self, request, job_number):
        try:
            return self.success(CleaningJobService.get(job_number))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, job_number):
        try:
            data = self.get_body(request)
            result = CleaningJobService.update_cleaning_job(
                job_number,
                quantity=data.get("quantity"),
                status=data.get("status"),
                started_at=data.get("startedAt"),
                finished_at=data.get("finishedAt"),
                leftover_quantity=data.get("leftoverQuantity"),
                reason_code=data.get("reasonCode"),
                user_id=self.get_user_id(request),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class CleanedMaterialsView(BaseRawView):

    def get(self, request):
        try:
            result = CleaningJobService.get_cleaned_materials(
                raw_material_id=self.query_int(request, "rawMaterialId"),
                warehouse_id=self.query_int(request, "warehouseId"),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== PROCESSING ====================

BY_PRODUCT_FIELDS = {
    "skuCode": "sku_code",
    "quantity": "quantity",
    "warehouseId": "warehouse_id",
    "tag": "tag",
    "reason": "reason",
}


class ProcessingJobListView(BaseRawView):

    def get(self, request):
        try:
            result = ProcessingJobService.list(
                status=request.query_params.get("status"),
                raw_material_id=self.query_int(request, "rawMaterialId"),
                warehouse_id=self.query_int(request, "warehouseId"),
                search=request.query_params.get("search"),
                page=self.query_int(request, "page", 1),
                per_page=self.query_int(request, "perPage", 20),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_body(request)
            result = ProcessingJobService.create_processing_job(
                input_raw_material_id=data.get("inputRawMaterialId"),
                source_warehouse_id=data.get("sourceWarehouseId"),
                quantity_input=data.get("quantityInput"),
                started_at=data.get("startedAt"),
                finished_at=data.get("finishedAt"),
                status=data.get("status"),
                user_id=self.get_user_id(request),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class ProcessingJobDetailView(BaseRawView):

    def get(self, request, job_number):
        try:
            return self.success(ProcessingJobService.get(job_number))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, job_number):
        try:
            data = self.get_body(request)
            by_products = data.get("byProducts")
            if isinstance(by_products, list):
                by_products = [
                    pick(item, BY_PRODUCT_FIELDS) if isinstance(item, dict) else item
                    for item in by_products
                ]
            result = ProcessingJobService.update_processing_job(
                job_number,
                quantity_input=data.get("quantityInput"),
                started_at=data.get("startedAt"),
                finished_at=data.get("finishedAt"),
                status=data.get("status"),
                by_products=by_products,
                finished_good_warehouse_id=data.get("finishedGoodWarehouseId"),
                user_id=self.get_user_id(request),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== UNFINISHED STOCK ====================

UNFINISHED_FIELDS = {
    "quantity": "quantity",
    "reasonCode": "reason_code",
    "skuCode": "sku_code",
    "warehouseId": "warehouse_id",
}


class UnfinishedStockListView(BaseRawView):

    def get(self, request):
        try:
            result = UnfinishedStockService.list(
                cleaning_job_id=self.query_int(request, "cleaningJobId"),
                processing_job_id=self.query_int(request, "processingJobId"),
                warehouse_id=self.query_int(request, "warehouseId"),
                page=self.query_int(request, "page", 1),
                per_page=self.query_int(request, "perPage", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_body(request)
            result = UnfinishedStockService.create(
                quantity=data.get("quantity"),
                reason_code=data.get("reasonCode", ""),
                warehouse_id=data.get("warehouseId"),
                cleaning_job_id=data.get("cleaningJobId"),
                processing_job_id=data.get("processingJobId"),
                sku_code=data.get("skuCode"),
                user_id=self.get_user_id(request),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class UnfinishedStockDetailView(BaseRawView):

    def get(self, request, unfinished_id):
        try:
            return self.success(UnfinishedStockService.get(unfinished_id))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, unfinished_id):
        try:
            data = self.get_body(request)
            result = UnfinishedStockService.update(
                unfinished_id, user_id=self.get_user_id(request), **pick(data, UNFINISHED_FIELDS)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== DASHBOARD ====================

class DashboardView(BaseRawView):
    """GET /raw/dashboard/<section>"""

    SECTIONS = {
        "total-stock": DashboardService.total_stock,
        "pending-pos": DashboardService.pending_purchase_orders,
        "under-cleaning": DashboardService.stock_under_cleaning,
        "in-processing": DashboardService.stock_in_processing,
        "low-stock": DashboardService.low_stock_alerts,
        "waste-stock": DashboardService.waste_stock,
        "summary": DashboardService.summary,
    }

    def get(self, request, section):
        try:
            handler = self.SECTIONS.get(section)
            if handler is None:
                return error(f"Unknown dashboard section: {section}", "NOT_FOUND", 404)
            return self.success(handler())
        except Exception as e:
            return handle_service_error(e)


class ConservationView(BaseRawView):

    def get(self, request):
        try:
            raw_material_id = self.query_int(request, "rawMaterialId")
            if raw_material_id is None:
                raise InvalidRequestError("rawMaterialId is required", "rawMaterialId")
            result = DashboardService.conservation(
                raw_material_id, warehouse_id=self.query_int(request, "warehouseId")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== TIMELINE ====================

class MaterialPurchaseOrdersView(BaseRawView):

    def get(self, request):
        try:
            result = TimelineService.purchase_orders_for_material(
                request.query_params.get("rawMaterialId")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class PurchaseOrderTimelineView(BaseRawView):

    def get(self, request, po_id):
        try:
            return self.success(TimelineService.purchase_order_timeline(po_id))
        except Exception as e:
            return handle_service_error(e)


# ==================== QUALITY ====================

QUALITY_FIELDS = {
    "rawMaterialName": "raw_material_name",
    "variety": "variety",
    "supplier": "supplier",
    "grn": "grn",
    "parameters": "parameters",
}


class QualityReportListView(BaseRawView):

    def get(self, request):
        try:
            result = RMQualityReportService.list(
                search=request.query_params.get("search"),
                page=self.query_int(request, "page", 1),
                per_page=self.query_int(request, "limit", 10),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_body(request)
            result = RMQualityReportService.create(
                raw_material_name=data.get("rawMaterialName"),
                grn=data.get("grn"),
                variety=data.get("variety", ""),
                supplier=data.get("supplier", ""),
                parameters=data.get("parameters"),
                user_id=self.get_user_id(request),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class QualityReportDetailView(BaseRawView):

    def get(self, request, report_id):
        try:
            return self.success(RMQualityReportService.get(report_id))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, report_id):
        try:
            data = self.get_body(request)
            result = RMQualityReportService.update(
                report_id, user_id=self.get_user_id(request), **pick(data, QUALITY_FIELDS)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, report_id):
        try:
            return self.success(
                RMQualityReportService.delete(report_id, user_id=self.get_user_id(request))
            )
        except Exception as e:
            return handle_service_error(e)


# ==================== LOGS ====================

class TransactionLogListView(BaseRawView):

    def get(self, request):
        try:
            result = TransactionLogService.list(
                entity=request.query_params.get("entity"),
                type=request.query_params.get("type"),
                user_id=self.query_int(request, "userId"),
                page=self.query_int(request, "page", 1),
                per_page=self.query_int(request, "perPage", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)
