from typing import Dict, Any, List
from datetime import datetime, time

from django.db.models import Sum
from django.utils import timezone

from rawmaterial.models import (
    PurchaseOrderItem, StockEntry, CleaningJob, ProcessingJob,
    FinishedGood,
)
from rawmaterial.services.base_service import success_response, parse_id, ZERO
from rawmaterial.services.cleaning_service import CleaningJobService
from rawmaterial.services.product_service import RawMaterialProductService
from rawmaterial.services.purchase_service import PurchaseOrderService


class TimelineService:
    """Traces a purchase order's material through receipt, cleaning and processing."""

    @classmethod
    def purchase_orders_for_material(cls, raw_material_id) -> Dict[str, Any]:
        material = RawMaterialProductService.require(parse_id(raw_material_id, "rawMaterialId"))

        items = PurchaseOrderItem.objects.filter(raw_material=material).select_related(
            "purchase_order", "purchase_order__vendor"
        ).order_by("-purchase_order__order_date", "purchase_order_id")

        orders: Dict[int, Dict[str, Any]] = {}
        for item in items:
            po = item.purchase_order
            row = orders.setdefault(po.id, {
                "id": po.id,
                "poNumber": po.po_number,
                "orderDate": po.order_date.isoformat(),
                "vendor": {"id": po.vendor.id, "name": po.vendor.name},
                "status": po.status,
                "totalQuantity": ZERO,
                "receivedQuantity": ZERO,
            })
            row["totalQuantity"] += item.quantity_ordered
            row["receivedQuantity"] += item.quantity_received

        rows = list(orders.values())
        for row in rows:
            row["totalQuantity"] = str(row["totalQuantity"])
            row["receivedQuantity"] = str(row["receivedQuantity"])

        return success_response({
            "rawMaterialId": material.id,
            "purchaseOrders": rows,
            "count": len(rows),
        })

    @classmethod
    def _event(cls, type: str, when, details: str, **extra) -> Dict[str, Any]:
        return {"type": type, "date": when, "details": details, **extra}

    @classmethod
    def purchase_order_timeline(cls, po_id) -> Dict[str, Any]:
        po = PurchaseOrderService.get_or_404(po_id)
        items = list(po.items.select_related("raw_material"))

        order_placed_at = timezone.make_aware(datetime.combine(po.order_date, time.min))

        events: List[Dict[str, Any]] = []
        material_ids = set()

        for item in items:
            material = item.raw_material
            unit = material.unit_of_measurement
            material_ids.add(material.id)

            events.append(cls._event(
                "ORDER_PLACED", order_placed_at,
                f"Order placed for {item.quantity_ordered} {unit} {material.name}",
                rawMaterialId=material.id,
            ))

            receipts = StockEntry.objects.filter(
                raw_material=material,
                reference_type=StockEntry.ReferenceType.PURCHASE_ORDER_ITEM,
                reference_id=str(item.id),
                entry_type=StockEntry.EntryType.IN,
            ).select_related("warehouse")
            for entry in receipts:
                events.append(cls._event(
                    "RECEIVED", entry.created_at,
                    f"Received {entry.quantity} {unit} at {entry.warehouse.name}",
                    rawMaterialId=material.id, quantity=str(entry.quantity),
                ))

        # Downstream jobs are linked by material, not by lot; only jobs started
        # after the order was placed can have drawn from it.
        cleaning_jobs = CleaningJob.objects.filter(
            raw_material_id__in=material_ids, created_at__gte=po.created_at
        ).exclude(status=CleaningJob.Status.CANCELLED).select_related(
            "raw_material", "from_warehouse", "to_warehouse"
        ).annotate(waste_total=Sum("unfinished_stocks__quantity"))

        for job in cleaning_jobs:
            unit = job.raw_material.unit_of_measurement
            events.append(cls._event(
                "CLEANING_STARTED", job.started_at or job.created_at,
                f"Cleaning started for {job.quantity} {unit} from {job.from_warehouse.name} "
                f"to {job.to_warehouse.name}",
                jobNumber=job.job_number,
            ))
            if job.is_completed and job.finished_at:
                wastage = CleaningJobService.waste_quantity(job)
                events.append(cls._event(
                    "CLEANED", job.finished_at,
                    f"{job.quantity} {unit} cleaned and found {wastage} {unit} wastage",
                    jobNumber=job.job_number, netQuantity=str(CleaningJobService.net_yield(job)),
                ))

        processing_jobs = ProcessingJob.objects.filter(
            input_raw_material_id__in=material_ids, created_at__gte=po.created_at
        ).exclude(status=ProcessingJob.Status.CANCELLED).select_related(
            "input_raw_material"
        ).annotate(by_product_total=Sum("by_products__quantity"))

        for job in processing_jobs:
            unit = job.input_raw_material.unit_of_measurement
            events.append(cls._event(
                "PROCESSING_STARTED", job.started_at or job.created_at,
                f"Processing started for {job.quantity_input} {unit}",
                jobNumber=job.job_number,
            ))
            if job.is_completed and job.finished_at:
                by_product = job.by_product_total or ZERO
                events.append(cls._event(
                    "PROCESSED", job.finished_at,
                    f"Processed {job.quantity_input} {unit} and found {by_product} {unit} by product",
                    jobNumber=job.job_number,
                ))
                finished_good = FinishedGood.objects.filter(processing_job=job).select_related(
                    "warehouse"
                ).first()
                if finished_good:
                    events.append(cls._event(
                        "FINISHED_GOOD", finished_good.created_at,
                        f"{finished_good.quantity} {finished_good.unit_of_measurement} "
                        f"{finished_good.name} stored in {finished_good.warehouse.name}",
                        jobNumber=job.job_number,
                    ))

        events.sort(key=lambda e: e["date"])
        for event in events:
            event["date"] = event["date"].isoformat()

        return success_response({
            "purchaseOrder": {
                "id": po.id,
                "poNumber": po.po_number,
                "orderDate": po.order_date.isoformat(),
                "status": po.status,
                "vendor": {"id": po.vendor.id, "name": po.vendor.name},
                "items": [
                    {
                        "rawMaterial": {"id": item.raw_material.id, "name": item.raw_material.name},
                        "orderedQuantity": str(item.quantity_ordered),
                        "receivedQuantity": str(item.quantity_received),
                    }
                    for item in items
                ],
            },
            "events": events,
        })
