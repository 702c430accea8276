from typing import Dict, Any
from decimal import Decimal

from rawmaterial.models import UnfinishedStock, ProcessingJob, TransactionLog
from rawmaterial.services.base_service import (
    BaseService, success_response, paginate_queryset, ledger_atomic,
    parse_quantity, InvalidRequestError, ConservationViolationError,
)
from rawmaterial.services.cleaning_service import CleaningJobService
from rawmaterial.services.log_service import TransactionLogService
from rawmaterial.services.processing_service import ProcessingJobService
from rawmaterial.services.warehouse_service import WarehouseService


class UnfinishedStockService(BaseService):
    model = UnfinishedStock

    @classmethod
    def resource_name(cls) -> str:
        return "Unfinished stock"

    @classmethod
    def serialize(cls, unfinished: UnfinishedStock) -> Dict[str, Any]:
        return {
            "id": unfinished.id,
            "uuid": str(unfinished.uuid),
            "cleaningJobId": unfinished.cleaning_job_id,
            "cleaningJobNumber": unfinished.cleaning_job.job_number if unfinished.cleaning_job else None,
            "processingJobId": unfinished.processing_job_id,
            "processingJobNumber": unfinished.processing_job.job_number if unfinished.processing_job else None,
            "skuCode": unfinished.sku_code,
            "quantity": str(unfinished.quantity),
            "reasonCode": unfinished.reason_code,
            "warehouseId": unfinished.warehouse_id,
            "warehouse": {"id": unfinished.warehouse.id, "name": unfinished.warehouse.name},
            "createdAt": unfinished.created_at.isoformat(),
            "updatedAt": unfinished.updated_at.isoformat(),
        }

    @classmethod
    def list(cls,
             cleaning_job_id: int = None,
             processing_job_id: int = None,
             warehouse_id: int = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("cleaning_job", "processing_job", "warehouse")

        if cleaning_job_id:
            queryset = queryset.filter(cleaning_job_id=cleaning_job_id)

        if processing_job_id:
            queryset = queryset.filter(processing_job_id=processing_job_id)

        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)

        rows, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "unfinishedStocks": [cls.serialize(u) for u in rows],
            "pagination": pagination
        })

    @classmethod
    def get(cls, unfinished_id: int) -> Dict[str, Any]:
        return success_response({"unfinishedStock": cls.serialize(cls.get_or_404(unfinished_id))})

    @classmethod
    def _check_processing_waste(cls, job: ProcessingJob, added: Decimal) -> None:
        if job.status != ProcessingJob.Status.IN_PROGRESS:
            raise InvalidRequestError(
                f"{job.job_number} is {job.status}; waste can only be booked while In-Progress",
                "processingJobId"
            )
        total = (
            ProcessingJobService.by_product_quantity(job)
            + ProcessingJobService.unfinished_quantity(job)
            + added
        )
        if total > job.quantity_input:
            raise ConservationViolationError(
                f"Waste ({total}) would exceed the input ({job.quantity_input}) of {job.job_number}",
                {"input": str(job.quantity_input), "waste": str(total)}
            )

    @classmethod
    @ledger_atomic
    def create(cls,
               quantity,
               reason_code: str = "",
               warehouse_id: int = None,
               cleaning_job_id=None,
               processing_job_id=None,
               sku_code: str = None,
               user_id: int = None) -> Dict[str, Any]:
        if bool(cleaning_job_id) == bool(processing_job_id):
            raise InvalidRequestError(
                "Exactly one of cleaningJobId or processingJobId is required",
                details={"fields": ["cleaningJobId", "processingJobId"]}
            )
        quantity = parse_quantity(quantity)

        if cleaning_job_id:
            job = CleaningJobService.find(cleaning_job_id, lock=True)
            if warehouse_id:
                WarehouseService.require(warehouse_id)
            unfinished = CleaningJobService.record_waste(
                job, quantity, reason_code, warehouse_id=warehouse_id, sku_code=sku_code
            )
        else:
            job = ProcessingJobService.find(processing_job_id, lock=True)
            cls._check_processing_waste(job, quantity)
            warehouse = WarehouseService.require(warehouse_id or job.source_warehouse_id)
            unfinished = cls.model.objects.create(
                processing_job=job,
                sku_code=sku_code or f"{job.input_raw_material.sku_code}-PUNF-{job.job_number}",
                quantity=quantity,
                reason_code=reason_code or "",
                warehouse=warehouse,
            )

        TransactionLogService.record(
            TransactionLog.Type.CREATE, "UnfinishedStock", unfinished.id,
            f"{quantity} waste booked against {job.job_number}", user_id
        )

        unfinished = cls.model.objects.select_related(
            "cleaning_job", "processing_job", "warehouse"
        ).get(id=unfinished.id)
        return success_response({
            "unfinishedStock": cls.serialize(unfinished)
        }, "Unfinished stock recorded")

    @classmethod
    @ledger_atomic
    def update(cls, unfinished_id: int, user_id: int = None, **kwargs) -> Dict[str, Any]:
        unfinished = cls.lock_or_404(unfinished_id)

        if "quantity" in kwargs:
            quantity = parse_quantity(kwargs["quantity"])
            delta = quantity - unfinished.quantity
            if delta:
                if unfinished.cleaning_job_id:
                    job = CleaningJobService.find(unfinished.cleaning_job_id, lock=True)
                    CleaningJobService.check_waste(
                        job, CleaningJobService.waste_quantity(job) + delta, delta
                    )
                else:
                    job = ProcessingJobService.find(unfinished.processing_job_id, lock=True)
                    cls._check_processing_waste(job, delta)
                unfinished.quantity = quantity

        for field in ["reason_code", "sku_code"]:
            if field in kwargs and kwargs[field] is not None:
                setattr(unfinished, field, kwargs[field])

        if kwargs.get("warehouse_id"):
            unfinished.warehouse = WarehouseService.require(kwargs["warehouse_id"])

        unfinished.save()

        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "UnfinishedStock", unfinished.id,
            f"Updated unfinished stock {unfinished.sku_code}", user_id
        )

        return success_response({"unfinishedStock": cls.serialize(unfinished)}, "Unfinished stock updated")
