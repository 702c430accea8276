import logging
from typing import Dict, Any, List, Tuple
from decimal import Decimal

from django.conf import settings
from django.db import transaction, IntegrityError
from django.db.models import Q, Sum, F
from django.utils import timezone

from rawmaterial.models import StockEntry, CurrentStock, TransactionLog
from rawmaterial.services.base_service import (
    BaseService, success_response, paginate_queryset, ledger_atomic,
    parse_quantity, parse_date, isoformat, InvalidRequestError,
    InsufficientStockError, ZERO,
)
from rawmaterial.services.log_service import TransactionLogService
from rawmaterial.services.product_service import RawMaterialProductService
from rawmaterial.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)


def signed_sum_expressions(prefix: str = "") -> Dict[str, Sum]:
    """Aggregates for the inbound and outbound halves of a StockEntry queryset."""
    return {
        "inbound": Sum(f"{prefix}quantity", filter=Q(**{f"{prefix}entry_type__in": StockEntry.INBOUND_TYPES})),
        "outbound": Sum(f"{prefix}quantity", filter=Q(**{f"{prefix}entry_type__in": StockEntry.OUTBOUND_TYPES})),
    }


class StockEntryService(BaseService):
    model = StockEntry

    @classmethod
    def resource_name(cls) -> str:
        return "Stock entry"

    @classmethod
    def serialize(cls, entry: StockEntry) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "uuid": str(entry.uuid),
            "rawMaterialId": entry.raw_material_id,
            "rawMaterial": {
                "id": entry.raw_material.id,
                "skuCode": entry.raw_material.sku_code,
                "name": entry.raw_material.name,
                "unitOfMeasurement": entry.raw_material.unit_of_measurement,
            },
            "warehouseId": entry.warehouse_id,
            "warehouse": {
                "id": entry.warehouse.id,
                "name": entry.warehouse.name,
            },
            "batchNumber": entry.batch_number,
            "expiryDate": isoformat(entry.expiry_date),
            "quantity": str(entry.quantity),
            "entryType": entry.entry_type,
            "referenceType": entry.reference_type,
            "referenceId": entry.reference_id,
            "status": entry.status,
            "reasonCode": entry.reason_code,
            "userId": entry.user_id,
            "createdAt": entry.created_at.isoformat(),
        }

    @classmethod
    def record_entry(cls,
                     raw_material_id: int,
                     warehouse_id: int,
                     quantity: Decimal,
                     entry_type: str,
                     reference_id: Any = "",
                     status: str = "",
                     reason_code: str = None,
                     batch_number: str = None,
                     expiry_date=None,
                     reference_type: str = StockEntry.ReferenceType.MANUAL,
                     user_id: int = None) -> StockEntry:
        """Append one movement to the ledger. The balance cache is left to the caller."""
        if entry_type not in StockEntry.EntryType.values:
            raise InvalidRequestError(
                f"Invalid entryType. Valid: {StockEntry.EntryType.values}", "entryType"
            )
        quantity = parse_quantity(quantity)

        entry = cls.model.objects.create(
            raw_material_id=raw_material_id,
            warehouse_id=warehouse_id,
            quantity=quantity,
            entry_type=entry_type,
            reference_type=reference_type,
            reference_id=str(reference_id or ""),
            status=status or "",
            reason_code=reason_code or "",
            batch_number=batch_number or "",
            expiry_date=parse_date(expiry_date, "expiryDate"),
            user_id=user_id,
        )

        logger.info(
            "Stock entry %s %s %s material=%s warehouse=%s ref=%s",
            entry.id, entry_type, quantity, raw_material_id, warehouse_id, entry.reference_id
        )
        return entry

    @classmethod
    @ledger_atomic
    def post_entry(cls,
                   raw_material_id: int,
                   warehouse_id: int,
                   quantity,
                   entry_type: str,
                   reference_id: Any = "",
                   status: str = "",
                   reason_code: str = None,
                   batch_number: str = None,
                   expiry_date=None,
                   user_id: int = None) -> Dict[str, Any]:
        """Append a manual entry and apply it to the balance cache in the same transaction."""
        material = RawMaterialProductService.require(raw_material_id)
        warehouse = WarehouseService.require(warehouse_id)
        quantity = parse_quantity(quantity)

        entry = cls.record_entry(
            raw_material_id=material.id,
            warehouse_id=warehouse.id,
            quantity=quantity,
            entry_type=entry_type,
            reference_id=reference_id,
            status=status,
            reason_code=reason_code,
            batch_number=batch_number,
            expiry_date=expiry_date,
            user_id=user_id,
        )

        if entry_type in StockEntry.INBOUND_TYPES:
            balance = CurrentStockService.increment(material.id, warehouse.id, quantity)
        else:
            balance = CurrentStockService.decrement(material.id, warehouse.id, quantity)

        TransactionLogService.record(
            TransactionLog.Type.CREATE, "StockEntry", entry.id,
            f"{entry_type} {quantity} {material.sku_code} at {warehouse.name}", user_id
        )

        return success_response({
            "stockEntry": cls.serialize(entry),
            "currentQuantity": str(balance),
        }, "Stock entry recorded")

    @classmethod
    @ledger_atomic
    def update_stock_entry(cls, entry_id: int, user_id: int = None, **kwargs) -> Dict[str, Any]:
        """
        Administrative metadata correction. The balance cache is not touched;
        a quantity change leaves drift that ``CurrentStockService.reconcile``
        reports until a compensating entry is posted.
        """
        entry = cls.get_or_404(entry_id)

        update_fields = []
        for field in ["status", "reason_code", "batch_number"]:
            if field in kwargs:
                setattr(entry, field, kwargs[field] or "")
                update_fields.append(field)

        if "expiry_date" in kwargs:
            entry.expiry_date = parse_date(kwargs["expiry_date"], "expiryDate")
            update_fields.append("expiry_date")

        if "quantity" in kwargs:
            quantity = parse_quantity(kwargs["quantity"])
            if quantity != entry.quantity:
                logger.warning(
                    "Stock entry %s quantity corrected %s -> %s; current stock not reconciled",
                    entry.id, entry.quantity, quantity
                )
                entry.quantity = quantity
                update_fields.append("quantity")

        if update_fields:
            entry.save(update_fields=update_fields)
            TransactionLogService.record(
                TransactionLog.Type.UPDATE, "StockEntry", entry.id,
                f"Updated {', '.join(update_fields)}", user_id
            )

        return success_response({"stockEntry": cls.serialize(entry)}, "Stock entry updated")

    @classmethod
    def list(cls,
             raw_material_id: int = None,
             warehouse_id: int = None,
             entry_type: str = None,
             status: str = None,
             reference_id: str = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("raw_material", "warehouse")

        if raw_material_id:
            queryset = queryset.filter(raw_material_id=raw_material_id)

        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)

        if entry_type:
            if entry_type not in StockEntry.EntryType.values:
                raise InvalidRequestError(
                    f"Invalid entryType. Valid: {StockEntry.EntryType.values}", "entryType"
                )
            queryset = queryset.filter(entry_type=entry_type)

        if status:
            queryset = queryset.filter(status=status)

        if reference_id:
            queryset = queryset.filter(reference_id=reference_id)

        entries, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "stockEntries": [cls.serialize(e) for e in entries],
            "pagination": pagination
        })

    @classmethod
    def get(cls, entry_id: int) -> Dict[str, Any]:
        entry = cls.get_or_404(entry_id)
        return success_response({"stockEntry": cls.serialize(entry)})

    @classmethod
    def replay_balance(cls, raw_material_id: int, warehouse_id: int) -> Decimal:
        totals = cls.model.objects.filter(
            raw_material_id=raw_material_id,
            warehouse_id=warehouse_id,
        ).aggregate(**signed_sum_expressions())
        return (totals["inbound"] or ZERO) - (totals["outbound"] or ZERO)

    @classmethod
    def replay_all(cls, raw_material_id: int = None, warehouse_id: int = None) -> Dict[Tuple[int, int], Decimal]:
        queryset = cls.model.objects.all()
        if raw_material_id:
            queryset = queryset.filter(raw_material_id=raw_material_id)
        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)

        rows = queryset.values("raw_material_id", "warehouse_id").annotate(
            **signed_sum_expressions()
        ).order_by()

        return {
            (row["raw_material_id"], row["warehouse_id"]):
                (row["inbound"] or ZERO) - (row["outbound"] or ZERO)
            for row in rows
        }


class CurrentStockService(BaseService):
    model = CurrentStock

    @classmethod
    def serialize(cls, stock: CurrentStock) -> Dict[str, Any]:
        return {
            "id": stock.id,
            "rawMaterialId": stock.raw_material_id,
            "rawMaterial": {
                "id": stock.raw_material.id,
                "skuCode": stock.raw_material.sku_code,
                "name": stock.raw_material.name,
                "category": stock.raw_material.category,
                "unitOfMeasurement": stock.raw_material.unit_of_measurement,
            },
            "warehouseId": stock.warehouse_id,
            "warehouse": {
                "id": stock.warehouse.id,
                "name": stock.warehouse.name,
                "location": stock.warehouse.location,
            },
            "currentQuantity": str(stock.current_quantity),
            "lastUpdated": stock.last_updated.isoformat(),
        }

    @classmethod
    def get_balance(cls, raw_material_id: int, warehouse_id: int) -> Decimal:
        value = cls.model.objects.filter(
            raw_material_id=raw_material_id,
            warehouse_id=warehouse_id,
        ).values_list("current_quantity", flat=True).first()
        return value if value is not None else ZERO

    @classmethod
    def _add(cls, raw_material_id: int, warehouse_id: int, delta: Decimal, minimum: Decimal = None) -> int:
        queryset = cls.model.objects.filter(
            raw_material_id=raw_material_id,
            warehouse_id=warehouse_id,
        )
        if minimum is not None:
            queryset = queryset.filter(current_quantity__gte=minimum)
        return queryset.update(
            current_quantity=F("current_quantity") + delta,
            last_updated=timezone.now(),
        )

    @classmethod
    def _upsert(cls, raw_material_id: int, warehouse_id: int, delta: Decimal) -> None:
        if cls._add(raw_material_id, warehouse_id, delta):
            return
        try:
            with transaction.atomic():
                cls.model.objects.create(
                    raw_material_id=raw_material_id,
                    warehouse_id=warehouse_id,
                    current_quantity=delta,
                )
        except IntegrityError:
            # Row was inserted concurrently; fall back to the atomic update.
            cls._add(raw_material_id, warehouse_id, delta)

    @classmethod
    @transaction.atomic
    def increment(cls, raw_material_id: int, warehouse_id: int, delta) -> Decimal:
        delta = parse_quantity(delta, "delta")
        cls._upsert(raw_material_id, warehouse_id, delta)
        balance = cls.get_balance(raw_material_id, warehouse_id)
        logger.debug("Stock +%s material=%s warehouse=%s -> %s",
                     delta, raw_material_id, warehouse_id, balance)
        return balance

    @classmethod
    @transaction.atomic
    def decrement(cls, raw_material_id: int, warehouse_id: int, delta) -> Decimal:
        delta = parse_quantity(delta, "delta")

        if not cls._add(raw_material_id, warehouse_id, -delta, minimum=delta):
            if not settings.ALLOW_NEGATIVE_STOCK:
                material = RawMaterialProductService.get_by_id(raw_material_id)
                warehouse = WarehouseService.get_by_id(warehouse_id)
                raise InsufficientStockError(
                    material.name if material else str(raw_material_id),
                    warehouse.name if warehouse else str(warehouse_id),
                    delta,
                    cls.get_balance(raw_material_id, warehouse_id),
                )
            cls._upsert(raw_material_id, warehouse_id, -delta)
            logger.warning("Stock for material=%s warehouse=%s driven negative by %s",
                           raw_material_id, warehouse_id, delta)

        balance = cls.get_balance(raw_material_id, warehouse_id)
        logger.debug("Stock -%s material=%s warehouse=%s -> %s",
                     delta, raw_material_id, warehouse_id, balance)
        return balance

    @classmethod
    def list_balances(cls,
                      raw_material_id: int = None,
                      warehouse_id: int = None,
                      include_empty: bool = True) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("raw_material", "warehouse")

        if raw_material_id:
            queryset = queryset.filter(raw_material_id=raw_material_id)

        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)

        if not include_empty:
            queryset = queryset.exclude(current_quantity=0)

        stocks = list(queryset.order_by("raw_material__name", "warehouse__name"))
        total = sum((s.current_quantity for s in stocks), ZERO)

        return success_response({
            "stocks": [cls.serialize(s) for s in stocks],
            "count": len(stocks),
            "totalQuantity": str(total),
        })

    @classmethod
    def reconcile(cls,
                  raw_material_id: int = None,
                  warehouse_id: int = None,
                  repair: bool = False) -> Dict[str, Any]:
        """Compare every cached balance with the ledger replay; optionally rebuild the cache."""
        ledger = StockEntryService.replay_all(raw_material_id, warehouse_id)

        queryset = cls.model.objects.all()
        if raw_material_id:
            queryset = queryset.filter(raw_material_id=raw_material_id)
        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        cached = {
            (row["raw_material_id"], row["warehouse_id"]): row["current_quantity"]
            for row in queryset.values("raw_material_id", "warehouse_id", "current_quantity")
        }

        drift: List[Dict[str, Any]] = []
        for key in sorted(set(ledger) | set(cached)):
            expected = ledger.get(key, ZERO)
            actual = cached.get(key, ZERO)
            if expected != actual:
                logger.warning(
                    "Stock drift material=%s warehouse=%s ledger=%s cached=%s",
                    key[0], key[1], expected, actual
                )
                drift.append({
                    "rawMaterialId": key[0],
                    "warehouseId": key[1],
                    "ledgerQuantity": str(expected),
                    "currentQuantity": str(actual),
                    "difference": str(expected - actual),
                })

        if repair and drift:
            with transaction.atomic():
                for item in drift:
                    cls.model.objects.update_or_create(
                        raw_material_id=item["rawMaterialId"],
                        warehouse_id=item["warehouseId"],
                        defaults={"current_quantity": Decimal(item["ledgerQuantity"])},
                    )
            logger.info("Rebuilt %d current stock rows from the ledger", len(drift))

        return success_response({
            "checked": len(set(ledger) | set(cached)),
            "drift": drift,
            "consistent": not drift,
            "repaired": bool(repair and drift),
        }, "Stock reconciled" if repair else "Stock checked")
