import logging
from typing import Dict, Any
from decimal import Decimal

from django.conf import settings
from django.db.models import F, Q, Sum

from rawmaterial.models import (
    CurrentStock, CleaningJob, ProcessingJob, RawMaterialProduct,
    UnfinishedStock, ByProduct, FinishedGood, StockEntry,
)
from rawmaterial.services.base_service import success_response, ZERO
from rawmaterial.services.cleaning_service import CleaningJobService
from rawmaterial.services.product_service import RawMaterialProductService
from rawmaterial.services.purchase_service import PurchaseOrderService
from rawmaterial.services.stock_service import CurrentStockService, signed_sum_expressions
from rawmaterial.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)


def _total(queryset, field: str) -> Decimal:
    return queryset.aggregate(total=Sum(field))["total"] or ZERO


class DashboardService:
    """Read-only rollups across the ledger. Every query tolerates empty tables."""

    @classmethod
    def total_stock(cls) -> Dict[str, Any]:
        result = CurrentStockService.list_balances()
        return success_response({
            "totalStock": result["totalQuantity"],
            "details": result["stocks"],
        })

    @classmethod
    def pending_purchase_orders(cls) -> Dict[str, Any]:
        result = PurchaseOrderService.get_pending_items()
        return success_response({
            "pendingCount": result["count"],
            "pendingItems": result["items"],
        })

    @classmethod
    def stock_under_cleaning(cls) -> Dict[str, Any]:
        jobs = CleaningJob.objects.filter(status__in=CleaningJob.OPEN_STATUSES)
        return success_response({
            "underCleaning": str(_total(jobs, "quantity")),
            "jobCount": jobs.count(),
        })

    @classmethod
    def stock_in_processing(cls) -> Dict[str, Any]:
        jobs = ProcessingJob.objects.filter(status=ProcessingJob.Status.IN_PROGRESS)
        return success_response({
            "inProcessing": str(_total(jobs, "quantity_input")),
            "jobCount": jobs.count(),
        })

    @classmethod
    def low_stock_alerts(cls) -> Dict[str, Any]:
        products = RawMaterialProduct.objects.annotate(
            total_qty=Sum("current_stocks__current_quantity")
        )

        if settings.LOW_STOCK_INCLUDE_UNSTOCKED:
            products = products.filter(
                Q(total_qty__lt=F("min_reorder_level")) |
                Q(total_qty__isnull=True, min_reorder_level__gt=0)
            )
        else:
            products = products.filter(total_qty__lt=F("min_reorder_level"))

        alerts = []
        for product in products.order_by("name"):
            total_qty = product.total_qty or ZERO
            alerts.append({
                "rawMaterialId": product.id,
                "skuCode": product.sku_code,
                "name": product.name,
                "unitOfMeasurement": product.unit_of_measurement,
                "totalStock": str(total_qty),
                "minReorderLevel": str(product.min_reorder_level),
                "shortage": str(product.min_reorder_level - total_qty),
            })

        return success_response({
            "lowStockAlerts": alerts,
            "count": len(alerts),
        })

    @classmethod
    def waste_stock(cls) -> Dict[str, Any]:
        # A cancelled processing job returns its whole input to the cleaned
        # pool, so its by-products and waste no longer count.
        unfinished = _total(
            UnfinishedStock.objects.exclude(processing_job__status=ProcessingJob.Status.CANCELLED)
            .exclude(cleaning_job__status=CleaningJob.Status.CANCELLED),
            "quantity"
        )
        by_product = _total(
            ByProduct.objects.exclude(processing_job__status=ProcessingJob.Status.CANCELLED),
            "quantity"
        )
        return success_response({
            "unfinishedStock": str(unfinished),
            "byProductStock": str(by_product),
            "totalWaste": str(unfinished + by_product),
        })

    SUMMARY_SECTIONS = {
        "totalStock": ("total_stock", {"totalStock": "0", "details": []}),
        "pendingPurchaseOrders": ("pending_purchase_orders", {"pendingCount": 0, "pendingItems": []}),
        "underCleaning": ("stock_under_cleaning", {"underCleaning": "0", "jobCount": 0}),
        "inProcessing": ("stock_in_processing", {"inProcessing": "0", "jobCount": 0}),
        "lowStock": ("low_stock_alerts", {"lowStockAlerts": [], "count": 0}),
        "waste": ("waste_stock", {"unfinishedStock": "0", "byProductStock": "0", "totalWaste": "0"}),
        "cleanedMaterials": ("cleaned_materials", {"cleanedMaterials": [], "count": 0}),
    }

    @classmethod
    def cleaned_materials(cls) -> Dict[str, Any]:
        return CleaningJobService.get_cleaned_materials()

    @classmethod
    def summary(cls) -> Dict[str, Any]:
        """All dashboard cards at once; a failing card degrades to its empty value."""
        data = {}
        failed = []
        for key, (method, fallback) in cls.SUMMARY_SECTIONS.items():
            try:
                result = getattr(cls, method)()
                result.pop("success", None)
                result.pop("message", None)
                data[key] = result
            except Exception:
                logger.exception("Dashboard section %s failed", key)
                data[key] = dict(fallback)
                failed.append(key)

        return success_response({**data, "failedSections": failed})

    @classmethod
    def conservation(cls, raw_material_id: int, warehouse_id: int = None) -> Dict[str, Any]:
        """
        Every stage total for one material, optionally narrowed to one
        warehouse, so the flow received -> cleaned -> processed can be
        audited end to end.
        """
        material = RawMaterialProductService.require(raw_material_id)
        if warehouse_id:
            WarehouseService.require(warehouse_id)

        entries = StockEntry.objects.filter(raw_material=material)
        stocks = CurrentStock.objects.filter(raw_material=material)
        cleaning = CleaningJob.objects.filter(raw_material=material).exclude(
            status=CleaningJob.Status.CANCELLED
        )
        completed = CleaningJob.objects.filter(
            raw_material=material, status__in=CleaningJob.COMPLETED_STATUSES
        )
        waste = UnfinishedStock.objects.filter(cleaning_job__in=completed)
        processing = ProcessingJob.objects.filter(input_raw_material=material).exclude(
            status=ProcessingJob.Status.CANCELLED
        )
        finished = FinishedGood.objects.filter(processing_job__in=processing)
        by_products = ByProduct.objects.filter(processing_job__in=processing)

        if warehouse_id:
            entries = entries.filter(warehouse_id=warehouse_id)
            stocks = stocks.filter(warehouse_id=warehouse_id)
            cleaning = cleaning.filter(from_warehouse_id=warehouse_id)
            completed = completed.filter(to_warehouse_id=warehouse_id)
            waste = UnfinishedStock.objects.filter(cleaning_job__in=completed)
            processing = processing.filter(source_warehouse_id=warehouse_id)
            finished = FinishedGood.objects.filter(processing_job__in=processing)
            by_products = ByProduct.objects.filter(processing_job__in=processing)

        ledger = entries.aggregate(**signed_sum_expressions())
        ledger_balance = (ledger["inbound"] or ZERO) - (ledger["outbound"] or ZERO)

        receipts = _total(entries.filter(entry_type=StockEntry.EntryType.IN), "quantity")
        cleaning_input = _total(cleaning, "quantity")
        cleaning_gross = _total(completed, "quantity")
        cleaning_waste = _total(waste, "quantity")
        cleaning_net = cleaning_gross - cleaning_waste
        processing_input = _total(processing, "quantity_input")
        finished_output = _total(finished, "quantity")
        by_product_output = _total(by_products, "quantity")
        stock_balance = _total(stocks, "current_quantity")
        cleaned_available = cleaning_net - processing_input

        return success_response({
            "rawMaterialId": material.id,
            "warehouseId": int(warehouse_id) if warehouse_id else None,
            "receipts": str(receipts),
            "cleaningInput": str(cleaning_input),
            "cleaningNetOutput": str(cleaning_net),
            "cleaningWaste": str(cleaning_waste),
            "processingInput": str(processing_input),
            "finishedGoodOutput": str(finished_output),
            "byProductOutput": str(by_product_output),
            "stockBalance": str(stock_balance),
            "ledgerBalance": str(ledger_balance),
            "balanceMatchesLedger": stock_balance == ledger_balance,
            "cleanedAvailable": str(max(cleaned_available, ZERO)),
            "netAvailable": str(stock_balance + max(cleaned_available, ZERO) + finished_output),
        })
