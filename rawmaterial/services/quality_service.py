from typing import Dict, Any, List

from django.db.models import Q

from rawmaterial.models import RMQualityReport, RMQualityParameter, TransactionLog
from rawmaterial.services.base_service import (
    BaseService, success_response, paginate_queryset, ledger_atomic,
    require_fields, InvalidRequestError,
)
from rawmaterial.services.log_service import TransactionLogService


class RMQualityReportService(BaseService):
    """Quality reports filed against a GRN. Independent of the stock ledger."""

    model = RMQualityReport

    @classmethod
    def resource_name(cls) -> str:
        return "RM quality report"

    @classmethod
    def serialize(cls, report: RMQualityReport) -> Dict[str, Any]:
        return {
            "id": report.id,
            "uuid": str(report.uuid),
            "rawMaterialName": report.raw_material_name,
            "variety": report.variety,
            "supplier": report.supplier,
            "grn": report.grn,
            "createdById": report.created_by_id,
            "parameters": [
                {
                    "id": p.id,
                    "parameter": p.parameter,
                    "standard": p.standard,
                    "result": p.result,
                }
                for p in report.parameters.all()
            ],
            "createdAt": report.created_at.isoformat(),
            "updatedAt": report.updated_at.isoformat(),
        }

    @classmethod
    def _clean_parameters(cls, parameters: List[Dict]) -> List[Dict]:
        if not isinstance(parameters, list):
            raise InvalidRequestError("parameters must be a list", "parameters")
        cleaned = []
        for index, param in enumerate(parameters):
            if not isinstance(param, dict) or not param.get("parameter"):
                raise InvalidRequestError(
                    f"parameters[{index}].parameter is required", "parameters"
                )
            cleaned.append({
                "parameter": str(param["parameter"]),
                "standard": str(param.get("standard") or ""),
                "result": str(param.get("result") or ""),
            })
        return cleaned

    @classmethod
    def list(cls, search: str = None, page: int = 1, per_page: int = 10) -> Dict[str, Any]:
        queryset = cls.model.objects.prefetch_related("parameters")

        if search:
            queryset = queryset.filter(
                Q(raw_material_name__icontains=search) |
                Q(variety__icontains=search) |
                Q(supplier__icontains=search) |
                Q(grn__icontains=search)
            )

        reports, pagination = paginate_queryset(queryset.order_by("-created_at"), page, per_page)

        return success_response({
            "reports": [cls.serialize(r) for r in reports],
            "pagination": pagination
        })

    @classmethod
    def get(cls, report_id: int) -> Dict[str, Any]:
        return success_response({"report": cls.serialize(cls.get_or_404(report_id))})

    @classmethod
    @ledger_atomic
    def create(cls,
               raw_material_name: str,
               grn: str,
               variety: str = "",
               supplier: str = "",
               parameters: List[Dict] = None,
               user_id: int = None) -> Dict[str, Any]:
        require_fields(
            {"rawMaterialName": raw_material_name, "grn": grn}, ["rawMaterialName", "grn"]
        )
        cleaned = cls._clean_parameters(parameters or [])

        report = cls.model.objects.create(
            raw_material_name=raw_material_name,
            variety=variety or "",
            supplier=supplier or "",
            grn=grn,
            created_by_id=user_id,
        )
        RMQualityParameter.objects.bulk_create([
            RMQualityParameter(report=report, **param) for param in cleaned
        ])

        TransactionLogService.record(
            TransactionLog.Type.CREATE, "RMQualityReport", report.id,
            f"Quality report for {raw_material_name} (GRN {grn})", user_id
        )

        return success_response({
            "report": cls.serialize(report)
        }, "RM Quality Report created successfully")

    @classmethod
    @ledger_atomic
    def update(cls, report_id: int, user_id: int = None, **kwargs) -> Dict[str, Any]:
        report = cls.get_or_404(report_id)

        for field in ["raw_material_name", "grn"]:
            if field in kwargs:
                if not kwargs[field]:
                    raise InvalidRequestError(f"{field} cannot be empty", field)
                setattr(report, field, kwargs[field])

        for field in ["variety", "supplier"]:
            if field in kwargs:
                setattr(report, field, kwargs[field] or "")

        report.save()

        if kwargs.get("parameters") is not None:
            cleaned = cls._clean_parameters(kwargs["parameters"])
            report.parameters.all().delete()
            RMQualityParameter.objects.bulk_create([
                RMQualityParameter(report=report, **param) for param in cleaned
            ])

        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "RMQualityReport", report.id,
            f"Updated quality report {report.grn}", user_id
        )

        return success_response({"report": cls.serialize(report)}, "RM Quality Report updated")

    @classmethod
    @ledger_atomic
    def delete(cls, report_id: int, user_id: int = None) -> Dict[str, Any]:
        report = cls.get_or_404(report_id)
        grn = report.grn
        report.delete()

        TransactionLogService.record(
            TransactionLog.Type.DELETE, "RMQualityReport", report_id,
            f"Deleted quality report {grn}", user_id
        )

        return success_response({"id": report_id}, "RM Quality Report deleted")
