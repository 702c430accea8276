from typing import Dict, Any

from django.db.models import Q

from rawmaterial.models import Vendor, TransactionLog
from rawmaterial.services.base_service import (
    BaseService, success_response, paginate_queryset, ledger_atomic,
    generate_number, InvalidRequestError,
)
from rawmaterial.services.log_service import TransactionLogService


class VendorService(BaseService):
    model = Vendor

    EDITABLE_FIELDS = (
        "name", "address", "contact_person", "contact_number", "email", "gstin",
        "bank_name", "account_holder", "account_no", "ifsc_code",
    )

    @classmethod
    def serialize(cls, vendor: Vendor) -> Dict[str, Any]:
        return {
            "id": vendor.id,
            "uuid": str(vendor.uuid),
            "vendorCode": vendor.vendor_code,
            "name": vendor.name,
            "address": vendor.address,
            "contactPerson": vendor.contact_person,
            "contactNumber": vendor.contact_number,
            "email": vendor.email,
            "gstin": vendor.gstin,
            "bankDetails": {
                "bankName": vendor.bank_name,
                "accountHolder": vendor.account_holder,
                "accountNo": vendor.account_no,
                "ifscCode": vendor.ifsc_code,
            },
            "enabled": vendor.enabled,
            "createdAt": vendor.created_at.isoformat(),
            "updatedAt": vendor.updated_at.isoformat(),
        }

    @classmethod
    def list(cls,
             enabled: bool = None,
             search: str = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if enabled is not None:
            queryset = queryset.filter(enabled=enabled)

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(vendor_code__icontains=search) |
                Q(gstin__icontains=search)
            )

        vendors, pagination = paginate_queryset(queryset.order_by("name"), page, per_page)

        return success_response({
            "vendors": [cls.serialize(v) for v in vendors],
            "pagination": pagination
        })

    @classmethod
    def get(cls, vendor_id: int) -> Dict[str, Any]:
        vendor = cls.get_or_404(vendor_id)
        return success_response({"vendor": cls.serialize(vendor)})

    @classmethod
    @ledger_atomic
    def create(cls, name: str, user_id: int = None, **kwargs) -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise InvalidRequestError("name is required", "name")

        fields = {
            field: kwargs[field] or ""
            for field in cls.EDITABLE_FIELDS
            if field != "name" and field in kwargs
        }

        vendor = cls.model.objects.create(
            vendor_code=generate_number("VEND", 5, separator="-"),
            name=name,
            enabled=kwargs.get("enabled", True),
            **fields,
        )

        TransactionLogService.record(
            TransactionLog.Type.CREATE, "Vendor", vendor.id,
            f"Created vendor {vendor.vendor_code} {vendor.name}", user_id
        )

        return success_response({
            "vendor": cls.serialize(vendor)
        }, f"Vendor '{name}' created")

    @classmethod
    @ledger_atomic
    def update(cls, vendor_id: int, user_id: int = None, **kwargs) -> Dict[str, Any]:
        vendor = cls.get_or_404(vendor_id)

        if "name" in kwargs and not (kwargs["name"] or "").strip():
            raise InvalidRequestError("name cannot be empty", "name")

        update_fields = ["updated_at"]
        for field in cls.EDITABLE_FIELDS:
            if field in kwargs:
                setattr(vendor, field, kwargs[field] or "")
                update_fields.append(field)

        vendor.save(update_fields=update_fields)

        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "Vendor", vendor.id,
            f"Updated vendor {vendor.vendor_code}", user_id
        )

        return success_response({"vendor": cls.serialize(vendor)}, "Vendor updated")

    @classmethod
    @ledger_atomic
    def set_status(cls, vendor_id: int, enabled: bool, user_id: int = None) -> Dict[str, Any]:
        if not isinstance(enabled, bool):
            raise InvalidRequestError("enabled must be true or false", "enabled")

        vendor = cls.get_or_404(vendor_id)
        vendor.enabled = enabled
        vendor.save(update_fields=["enabled", "updated_at"])

        state = "enabled" if enabled else "disabled"
        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "Vendor", vendor.id,
            f"Vendor {vendor.vendor_code} {state}", user_id
        )

        return success_response({"vendor": cls.serialize(vendor)}, f"Vendor {state}")
