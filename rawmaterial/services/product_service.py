from typing import Dict, Any

from django.db.models import Q, Sum, ProtectedError

from rawmaterial.models import RawMaterialProduct, TransactionLog
from rawmaterial.services.base_service import (
    BaseService, success_response, paginate_queryset, ledger_atomic,
    parse_quantity, require_fields, InvalidRequestError, NotFoundError,
)
from rawmaterial.services.log_service import TransactionLogService
from rawmaterial.services.vendor_service import VendorService


class RawMaterialProductService(BaseService):
    model = RawMaterialProduct

    REFERENCES = (
        "current_stocks", "stock_entries", "purchase_order_items",
        "cleaning_jobs", "processing_jobs",
    )

    @classmethod
    def resource_name(cls) -> str:
        return "Raw material"

    @classmethod
    def serialize(cls, product: RawMaterialProduct, include_stock: bool = False) -> Dict[str, Any]:
        data = {
            "id": product.id,
            "uuid": str(product.uuid),
            "skuCode": product.sku_code,
            "name": product.name,
            "category": product.category,
            "unitOfMeasurement": product.unit_of_measurement,
            "minReorderLevel": str(product.min_reorder_level),
            "vendorId": product.vendor_id,
            "vendor": {
                "id": product.vendor.id,
                "name": product.vendor.name,
                "vendorCode": product.vendor.vendor_code,
            } if product.vendor else None,
            "createdAt": product.created_at.isoformat(),
            "updatedAt": product.updated_at.isoformat(),
        }

        if include_stock:
            total = product.current_stocks.aggregate(total=Sum("current_quantity"))["total"]
            data["totalStock"] = str(total or 0)

        return data

    @classmethod
    def list(cls,
             category: str = None,
             vendor_id: int = None,
             search: str = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("vendor")

        if category:
            queryset = queryset.filter(category__iexact=category)

        if vendor_id:
            queryset = queryset.filter(vendor_id=vendor_id)

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) | Q(sku_code__icontains=search)
            )

        products, pagination = paginate_queryset(queryset.order_by("name"), page, per_page)

        return success_response({
            "products": [cls.serialize(p) for p in products],
            "pagination": pagination
        })

    @classmethod
    def get(cls, product_id: int) -> Dict[str, Any]:
        product = cls.get_or_404(product_id)
        return success_response({
            "product": cls.serialize(product, include_stock=True)
        })

    @classmethod
    def _resolve_vendor(cls, vendor_id):
        if vendor_id in (None, ""):
            return None
        return VendorService.get_or_404(vendor_id)

    @classmethod
    @ledger_atomic
    def create(cls,
               sku_code: str,
               name: str,
               unit_of_measurement: str,
               category: str = "",
               min_reorder_level=0,
               vendor_id: int = None,
               user_id: int = None) -> Dict[str, Any]:
        require_fields(
            {"skuCode": sku_code, "name": name, "unitOfMeasurement": unit_of_measurement},
            ["skuCode", "name", "unitOfMeasurement"]
        )

        if cls.model.objects.filter(sku_code__iexact=sku_code).exists():
            raise InvalidRequestError(f"SKU '{sku_code}' already exists", "skuCode")

        product = cls.model.objects.create(
            sku_code=sku_code.strip(),
            name=name.strip(),
            category=category or "",
            unit_of_measurement=unit_of_measurement,
            min_reorder_level=parse_quantity(min_reorder_level or 0, "minReorderLevel", allow_zero=True),
            vendor=cls._resolve_vendor(vendor_id),
        )

        TransactionLogService.record(
            TransactionLog.Type.CREATE, "RawMaterialProduct", product.id,
            f"Created raw material {product.sku_code}", user_id
        )

        return success_response({
            "product": cls.serialize(product)
        }, f"Raw material '{product.name}' created")

    @classmethod
    @ledger_atomic
    def update(cls, product_id: int, user_id: int = None, **kwargs) -> Dict[str, Any]:
        product = cls.get_or_404(product_id)

        if "sku_code" in kwargs:
            sku_code = (kwargs["sku_code"] or "").strip()
            if not sku_code:
                raise InvalidRequestError("skuCode cannot be empty", "skuCode")
            if cls.model.objects.filter(sku_code__iexact=sku_code).exclude(id=product.id).exists():
                raise InvalidRequestError(f"SKU '{sku_code}' already exists", "skuCode")
            product.sku_code = sku_code

        for field in ["name", "unit_of_measurement"]:
            if field in kwargs:
                if not kwargs[field]:
                    raise InvalidRequestError(f"{field} cannot be empty", field)
                setattr(product, field, kwargs[field])

        if "category" in kwargs:
            product.category = kwargs["category"] or ""

        if "min_reorder_level" in kwargs:
            product.min_reorder_level = parse_quantity(
                kwargs["min_reorder_level"], "minReorderLevel", allow_zero=True
            )

        if "vendor_id" in kwargs:
            product.vendor = cls._resolve_vendor(kwargs["vendor_id"])

        product.save()

        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "RawMaterialProduct", product.id,
            f"Updated raw material {product.sku_code}", user_id
        )

        return success_response({"product": cls.serialize(product)}, "Raw material updated")

    @classmethod
    @ledger_atomic
    def delete(cls, product_id: int, user_id: int = None) -> Dict[str, Any]:
        product = cls.get_or_404(product_id)

        in_use = [
            relation for relation in cls.REFERENCES
            if getattr(product, relation).exists()
        ]
        if in_use:
            raise InvalidRequestError(
                f"Raw material '{product.sku_code}' has stock or job history and cannot be deleted",
                details={"references": in_use}
            )

        sku_code = product.sku_code
        try:
            product.delete()
        except ProtectedError as e:
            raise InvalidRequestError(
                f"Raw material '{sku_code}' has stock or job history and cannot be deleted"
            ) from e

        TransactionLogService.record(
            TransactionLog.Type.DELETE, "RawMaterialProduct", product_id,
            f"Deleted raw material {sku_code}", user_id
        )

        return success_response({"id": product_id}, "Raw material deleted")

    @classmethod
    def require(cls, product_id, field: str = "rawMaterialId") -> RawMaterialProduct:
        if product_id in (None, ""):
            raise InvalidRequestError(f"{field} is required", field)
        product = cls.get_by_id(product_id)
        if not product:
            raise NotFoundError("Raw material", product_id)
        return product
