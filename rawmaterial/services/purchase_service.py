import logging
from typing import Dict, Any, List

from django.db.models import Q
from django.utils import timezone

from rawmaterial.models import (
    PurchaseOrder, PurchaseOrderItem, StockEntry, TransactionLog,
)
from rawmaterial.services.base_service import (
    BaseService, success_response, paginate_queryset, ledger_atomic,
    generate_number, parse_quantity, parse_date, parse_id, isoformat,
    InvalidRequestError, ZERO,
)
from rawmaterial.services.log_service import TransactionLogService
from rawmaterial.services.product_service import RawMaterialProductService
from rawmaterial.services.stock_service import StockEntryService, CurrentStockService
from rawmaterial.services.vendor_service import VendorService
from rawmaterial.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)


class PurchaseOrderService(BaseService):
    model = PurchaseOrder

    @classmethod
    def resource_name(cls) -> str:
        return "Purchase order"

    @classmethod
    def serialize(cls, po: PurchaseOrder, include_items: bool = True) -> Dict[str, Any]:
        data = {
            "id": po.id,
            "uuid": str(po.uuid),
            "poNumber": po.po_number,
            "vendorId": po.vendor_id,
            "vendor": {
                "id": po.vendor.id,
                "name": po.vendor.name,
                "vendorCode": po.vendor.vendor_code,
            },
            "orderDate": po.order_date.isoformat(),
            "expectedDate": isoformat(po.expected_date),
            "status": po.status,
            "createdById": po.created_by_id,
            "createdAt": po.created_at.isoformat(),
            "updatedAt": po.updated_at.isoformat(),
        }

        if include_items:
            items = list(po.items.select_related("raw_material"))
            data["items"] = [PurchaseOrderItemService.serialize(item) for item in items]
            data["itemCount"] = len(items)
            data["totalAmount"] = str(sum((i.quantity_ordered * i.rate for i in items), ZERO))

        return data

    @classmethod
    def list(cls,
             vendor_id: int = None,
             status: str = None,
             search: str = None,
             page: int = 1,
             per_page: int = 20) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("vendor")

        if vendor_id:
            queryset = queryset.filter(vendor_id=vendor_id)

        if status:
            queryset = queryset.filter(status=status)

        if search:
            queryset = queryset.filter(
                Q(po_number__icontains=search) |
                Q(vendor__name__icontains=search)
            )

        queryset = queryset.order_by("-order_date", "-created_at")

        orders, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "purchaseOrders": [cls.serialize(po) for po in orders],
            "pagination": pagination,
            "statuses": PurchaseOrder.Status.values,
        })

    @classmethod
    def get(cls, po_id: int) -> Dict[str, Any]:
        po = cls.get_or_404(po_id)
        return success_response({"purchaseOrder": cls.serialize(po)})

    @classmethod
    def _validate_items(cls, items: List[Dict]) -> List[Dict]:
        if not items or not isinstance(items, list):
            raise InvalidRequestError("items must be a non-empty list", "items")

        cleaned = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise InvalidRequestError(f"items[{index}] must be an object", "items")
            material = RawMaterialProductService.require(
                item.get("raw_material_id"), f"items[{index}].rawMaterialId"
            )
            cleaned.append({
                "raw_material": material,
                "quantity_ordered": parse_quantity(
                    item.get("quantity_ordered"), f"items[{index}].quantityOrdered"
                ),
                "rate": parse_quantity(
                    item.get("rate", 0), f"items[{index}].rate", allow_zero=True
                ),
            })
        return cleaned

    @classmethod
    @ledger_atomic
    def create_purchase_order(cls,
                              vendor_id: int,
                              order_date,
                              expected_date=None,
                              items: List[Dict] = None,
                              user_id: int = None) -> Dict[str, Any]:
        vendor = VendorService.get_or_404(parse_id(vendor_id, "vendorId"))
        if not vendor.enabled:
            raise InvalidRequestError(
                f"Vendor {vendor.vendor_code} is disabled and cannot receive new orders", "vendorId"
            )

        order_date = parse_date(order_date, "orderDate") or timezone.localdate()
        expected_date = parse_date(expected_date, "expectedDate")
        if expected_date and expected_date < order_date:
            raise InvalidRequestError("expectedDate cannot be before orderDate", "expectedDate")

        cleaned_items = cls._validate_items(items)

        po = cls.model.objects.create(
            po_number=generate_number("PO", 4, date_scoped=True, separator="-"),
            vendor=vendor,
            order_date=order_date,
            expected_date=expected_date,
            status=PurchaseOrder.Status.CREATED,
            created_by_id=user_id,
        )

        PurchaseOrderItem.objects.bulk_create([
            PurchaseOrderItem(
                purchase_order=po,
                raw_material=item["raw_material"],
                quantity_ordered=item["quantity_ordered"],
                rate=item["rate"],
                quantity_received=ZERO,
                status=PurchaseOrderItem.Status.PENDING,
            )
            for item in cleaned_items
        ])

        TransactionLogService.record(
            TransactionLog.Type.CREATE, "PurchaseOrder", po.id,
            f"Created {po.po_number} for {vendor.name} with {len(cleaned_items)} item(s)", user_id
        )
        logger.info("Purchase order %s created with %d items", po.po_number, len(cleaned_items))

        return success_response({
            "purchaseOrder": cls.serialize(po)
        }, f"Purchase order {po.po_number} created")

    @classmethod
    @ledger_atomic
    def update_purchase_order(cls,
                              po_id: int,
                              status: str = None,
                              expected_date=None,
                              user_id: int = None) -> Dict[str, Any]:
        po = cls.lock_or_404(po_id)

        update_fields = ["updated_at"]

        if expected_date is not None:
            po.expected_date = parse_date(expected_date, "expectedDate")
            update_fields.append("expected_date")

        if status and status != po.status:
            if status != PurchaseOrder.Status.CANCELLED:
                raise InvalidRequestError(
                    "Only cancellation can be set directly; receipt statuses follow the items",
                    "status"
                )
            if po.items.filter(quantity_received__gt=0).exists():
                raise InvalidRequestError(
                    f"{po.po_number} has received items and cannot be cancelled", "status"
                )
            po.status = status
            update_fields.append("status")

        po.save(update_fields=update_fields)

        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "PurchaseOrder", po.id,
            f"Updated {po.po_number}", user_id
        )

        return success_response({"purchaseOrder": cls.serialize(po)}, "Purchase order updated")

    @classmethod
    def refresh_status(cls, po: PurchaseOrder) -> None:
        if po.status == PurchaseOrder.Status.CANCELLED:
            return

        statuses = list(po.items.values_list("status", flat=True))
        if statuses and all(s == PurchaseOrderItem.Status.RECEIVED for s in statuses):
            new_status = PurchaseOrder.Status.RECEIVED
        elif any(s != PurchaseOrderItem.Status.PENDING for s in statuses):
            new_status = PurchaseOrder.Status.PARTIALLY_RECEIVED
        else:
            new_status = PurchaseOrder.Status.CREATED

        if new_status != po.status:
            po.status = new_status
            po.save(update_fields=["status", "updated_at"])

    @classmethod
    def get_pending_items(cls) -> Dict[str, Any]:
        items = PurchaseOrderItem.objects.exclude(
            status=PurchaseOrderItem.Status.RECEIVED
        ).exclude(
            purchase_order__status=PurchaseOrder.Status.CANCELLED
        ).select_related("purchase_order", "purchase_order__vendor", "raw_material").order_by(
            "purchase_order__expected_date", "id"
        )

        return success_response({
            "items": [
                PurchaseOrderItemService.serialize(item, include_order=True)
                for item in items
            ],
            "count": len(items),
        })


class PurchaseOrderItemService(BaseService):
    model = PurchaseOrderItem

    RECEIVING_STATUSES = (
        PurchaseOrderItem.Status.RECEIVED,
        PurchaseOrderItem.Status.PARTIALLY_RECEIVED,
    )

    @classmethod
    def resource_name(cls) -> str:
        return "Purchase order item"

    @classmethod
    def serialize(cls, item: PurchaseOrderItem, include_order: bool = False) -> Dict[str, Any]:
        data = {
            "id": item.id,
            "purchaseOrderId": item.purchase_order_id,
            "rawMaterialId": item.raw_material_id,
            "rawMaterial": {
                "id": item.raw_material.id,
                "skuCode": item.raw_material.sku_code,
                "name": item.raw_material.name,
                "unitOfMeasurement": item.raw_material.unit_of_measurement,
            },
            "quantityOrdered": str(item.quantity_ordered),
            "quantityReceived": str(item.quantity_received),
            "quantityPending": str(max(item.quantity_ordered - item.quantity_received, ZERO)),
            "rate": str(item.rate),
            "status": item.status,
        }

        if include_order:
            data["purchaseOrder"] = {
                "id": item.purchase_order.id,
                "poNumber": item.purchase_order.po_number,
                "vendorName": item.purchase_order.vendor.name,
                "expectedDate": isoformat(item.purchase_order.expected_date),
                "status": item.purchase_order.status,
            }

        return data

    @classmethod
    @ledger_atomic
    def update_purchase_order_item(cls,
                                   item_id: int,
                                   quantity_received=None,
                                   status: str = None,
                                   warehouse_id: int = None,
                                   batch_number: str = None,
                                   expiry_date=None,
                                   user_id: int = None) -> Dict[str, Any]:
        """
        Record a receipt against a line item.

        ``quantity_received`` is the cumulative total received so far. Only
        the increase over the stored total reaches the ledger, so sending
        the same total twice posts nothing.
        """
        item = cls.lock_or_404(item_id)
        po = item.purchase_order

        if status and status not in PurchaseOrderItem.Status.values:
            raise InvalidRequestError(
                f"Invalid status. Valid: {PurchaseOrderItem.Status.values}", "status"
            )

        if quantity_received in (None, ""):
            new_total = item.quantity_received
        else:
            new_total = parse_quantity(quantity_received, "quantityReceived", allow_zero=True)

        delta = new_total - item.quantity_received
        if delta < 0:
            raise InvalidRequestError(
                f"quantityReceived is cumulative and cannot decrease "
                f"({item.quantity_received} already received)",
                "quantityReceived",
                {"alreadyReceived": str(item.quantity_received)}
            )

        if status:
            new_status = status
        elif delta > 0:
            new_status = (
                PurchaseOrderItem.Status.RECEIVED
                if new_total >= item.quantity_ordered
                else PurchaseOrderItem.Status.PARTIALLY_RECEIVED
            )
        else:
            new_status = item.status

        entry = None
        if delta > 0:
            if po.status == PurchaseOrder.Status.CANCELLED:
                raise InvalidRequestError(f"{po.po_number} is cancelled", "status")
            if new_status not in cls.RECEIVING_STATUSES:
                raise InvalidRequestError(
                    "Receiving stock requires status Received or Partially Received", "status"
                )
            warehouse = WarehouseService.require(warehouse_id)

            if new_total > item.quantity_ordered:
                logger.warning(
                    "Over-receipt on %s item %s: ordered %s, received %s",
                    po.po_number, item.id, item.quantity_ordered, new_total
                )

            CurrentStockService.increment(item.raw_material_id, warehouse.id, delta)
            entry = StockEntryService.record_entry(
                raw_material_id=item.raw_material_id,
                warehouse_id=warehouse.id,
                quantity=delta,
                entry_type=StockEntry.EntryType.IN,
                reference_type=StockEntry.ReferenceType.PURCHASE_ORDER_ITEM,
                reference_id=item.id,
                status=new_status,
                batch_number=batch_number,
                expiry_date=expiry_date,
                user_id=user_id,
            )
        elif new_status == PurchaseOrderItem.Status.PENDING and item.quantity_received > 0:
            raise InvalidRequestError(
                "An item with received stock cannot go back to Pending", "status"
            )

        item.quantity_received = new_total
        item.status = new_status
        item.save(update_fields=["quantity_received", "status", "updated_at"])

        PurchaseOrderService.refresh_status(po)

        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "PurchaseOrderItem", item.id,
            f"{po.po_number}: received {new_total} of {item.quantity_ordered} (+{delta})", user_id
        )

        return success_response({
            "item": cls.serialize(item),
            "receivedDelta": str(delta),
            "stockEntry": StockEntryService.serialize(entry) if entry else None,
            "purchaseOrderStatus": po.status,
        }, "Purchase order item updated")
