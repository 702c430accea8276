from typing import Dict, Any

from django.db.models import Q, Count, Sum, ProtectedError

from rawmaterial.models import Warehouse, TransactionLog
from rawmaterial.services.base_service import (
    BaseService, success_response, ledger_atomic,
    InvalidRequestError, NotFoundError,
)
from rawmaterial.services.log_service import TransactionLogService


class WarehouseService(BaseService):
    model = Warehouse

    REFERENCES = (
        "current_stocks", "stock_entries", "outgoing_cleaning_jobs",
        "incoming_cleaning_jobs", "processing_jobs", "by_products",
        "finished_goods", "unfinished_stocks",
    )

    @classmethod
    def serialize(cls, warehouse: Warehouse, include_stats: bool = False) -> Dict[str, Any]:
        data = {
            "id": warehouse.id,
            "uuid": str(warehouse.uuid),
            "name": warehouse.name,
            "location": warehouse.location,
            "createdAt": warehouse.created_at.isoformat(),
            "updatedAt": warehouse.updated_at.isoformat(),
        }

        if include_stats:
            stats = warehouse.current_stocks.aggregate(
                material_count=Count("id", filter=Q(current_quantity__gt=0)),
                total_quantity=Sum("current_quantity"),
            )
            data["stats"] = {
                "materialCount": stats["material_count"] or 0,
                "totalQuantity": str(stats["total_quantity"] or 0),
            }

        return data

    @classmethod
    def list(cls, search: str = None) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) | Q(location__icontains=search)
            )

        warehouses = [cls.serialize(w) for w in queryset.order_by("name")]

        return success_response({
            "warehouses": warehouses,
            "count": len(warehouses)
        })

    @classmethod
    def get(cls, warehouse_id: int) -> Dict[str, Any]:
        warehouse = cls.get_or_404(warehouse_id)
        return success_response({
            "warehouse": cls.serialize(warehouse, include_stats=True)
        })

    @classmethod
    @ledger_atomic
    def create(cls, name: str, location: str = "", user_id: int = None) -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise InvalidRequestError("name is required", "name")

        if cls.model.objects.filter(name__iexact=name).exists():
            raise InvalidRequestError(f"Warehouse with name '{name}' already exists", "name")

        warehouse = cls.model.objects.create(name=name, location=location or "")

        TransactionLogService.record(
            TransactionLog.Type.CREATE, "Warehouse", warehouse.id,
            f"Created warehouse {warehouse.name}", user_id
        )

        return success_response({
            "warehouse": cls.serialize(warehouse)
        }, f"Warehouse '{name}' created")

    @classmethod
    @ledger_atomic
    def update(cls, warehouse_id: int, user_id: int = None, **kwargs) -> Dict[str, Any]:
        warehouse = cls.get_or_404(warehouse_id)

        if "name" in kwargs:
            name = (kwargs["name"] or "").strip()
            if not name:
                raise InvalidRequestError("name cannot be empty", "name")
            if cls.model.objects.filter(name__iexact=name).exclude(id=warehouse.id).exists():
                raise InvalidRequestError(f"Warehouse with name '{name}' already exists", "name")
            kwargs["name"] = name

        update_fields = ["updated_at"]
        for field in ["name", "location"]:
            if field in kwargs:
                setattr(warehouse, field, kwargs[field] or "")
                update_fields.append(field)

        warehouse.save(update_fields=update_fields)

        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "Warehouse", warehouse.id,
            f"Updated warehouse {warehouse.name}", user_id
        )

        return success_response({
            "warehouse": cls.serialize(warehouse)
        }, "Warehouse updated")

    @classmethod
    @ledger_atomic
    def delete(cls, warehouse_id: int, user_id: int = None) -> Dict[str, Any]:
        warehouse = cls.get_or_404(warehouse_id)

        in_use = [
            relation for relation in cls.REFERENCES
            if getattr(warehouse, relation).exists()
        ]
        if in_use:
            raise InvalidRequestError(
                f"Warehouse '{warehouse.name}' is referenced by stock records and cannot be deleted",
                details={"references": in_use}
            )

        name = warehouse.name
        try:
            warehouse.delete()
        except ProtectedError as e:
            raise InvalidRequestError(
                f"Warehouse '{name}' is referenced by stock records and cannot be deleted"
            ) from e

        TransactionLogService.record(
            TransactionLog.Type.DELETE, "Warehouse", warehouse_id,
            f"Deleted warehouse {name}", user_id
        )

        return success_response({"id": warehouse_id}, "Warehouse deleted")

    @classmethod
    def require(cls, warehouse_id, field: str = "warehouseId") -> Warehouse:
        if warehouse_id in (None, ""):
            raise InvalidRequestError(f"{field} is required", field)
        warehouse = cls.get_by_id(warehouse_id)
        if not warehouse:
            raise NotFoundError("Warehouse", warehouse_id)
        return warehouse
