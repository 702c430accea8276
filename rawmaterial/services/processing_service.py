import logging
from typing import Dict, Any, List, Optional
from decimal import Decimal

from django.db.models import Q, Sum
from django.utils import timezone

from rawmaterial.models import (
    ProcessingJob, ByProduct, FinishedGood, UnfinishedStock, TransactionLog,
)
from rawmaterial.services.base_service import (
    BaseService, success_response, paginate_queryset, ledger_atomic,
    generate_number, parse_quantity, parse_timestamp, isoformat, round_decimal,
    InvalidRequestError, NotFoundError, ConservationViolationError, ZERO,
)
from rawmaterial.services.cleaning_service import CleaningJobService
from rawmaterial.services.log_service import TransactionLogService
from rawmaterial.services.product_service import RawMaterialProductService
from rawmaterial.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)

Status = ProcessingJob.Status


class ProcessingJobService(BaseService):
    model = ProcessingJob

    ALLOWED_TRANSITIONS = {
        Status.IN_PROGRESS: {Status.FINISHED, Status.COMPLETED, Status.CANCELLED},
        Status.FINISHED: {Status.COMPLETED},
        Status.COMPLETED: {Status.FINISHED},
        Status.CANCELLED: set(),
    }

    @classmethod
    def resource_name(cls) -> str:
        return "Processing job"

    @classmethod
    def serialize_by_product(cls, by_product: ByProduct) -> Dict[str, Any]:
        return {
            "id": by_product.id,
            "skuCode": by_product.sku_code,
            "quantity": str(by_product.quantity),
            "warehouseId": by_product.warehouse_id,
            "tag": by_product.tag,
            "reason": by_product.reason,
        }

    @classmethod
    def serialize_finished_good(cls, finished_good: FinishedGood) -> Dict[str, Any]:
        return {
            "id": finished_good.id,
            "uuid": str(finished_good.uuid),
            "processingJobId": finished_good.processing_job_id,
            "skuCode": finished_good.sku_code,
            "name": finished_good.name,
            "category": finished_good.category,
            "unitOfMeasurement": finished_good.unit_of_measurement,
            "quantity": str(finished_good.quantity),
            "warehouseId": finished_good.warehouse_id,
            "createdAt": finished_good.created_at.isoformat(),
        }

    @classmethod
    def serialize(cls, job: ProcessingJob) -> Dict[str, Any]:
        by_products = list(job.by_products.all())
        by_product_total = sum((b.quantity for b in by_products), ZERO)
        unfinished_total = cls.unfinished_quantity(job)
        finished_good = cls.finished_good_for(job)

        if finished_good:
            output = finished_good.quantity
        else:
            output = job.quantity_input - by_product_total - unfinished_total

        ratio = round_decimal(output / job.quantity_input) if job.quantity_input else ZERO

        return {
            "id": job.id,
            "uuid": str(job.uuid),
            "jobNumber": job.job_number,
            "inputRawMaterialId": job.input_raw_material_id,
            "inputRawMaterial": {
                "id": job.input_raw_material.id,
                "skuCode": job.input_raw_material.sku_code,
                "name": job.input_raw_material.name,
                "unitOfMeasurement": job.input_raw_material.unit_of_measurement,
            },
            "sourceWarehouseId": job.source_warehouse_id,
            "sourceWarehouse": {"id": job.source_warehouse.id, "name": job.source_warehouse.name},
            "quantityInput": str(job.quantity_input),
            "status": job.status,
            "startedAt": isoformat(job.started_at),
            "finishedAt": isoformat(job.finished_at),
            "byProducts": [cls.serialize_by_product(b) for b in by_products],
            "totalByProductQuantity": str(by_product_total),
            "totalUnfinishedQuantity": str(unfinished_total),
            "finishedGood": cls.serialize_finished_good(finished_good) if finished_good else None,
            "outputQuantity": str(output),
            "conversionRatio": str(ratio),
            "createdAt": job.created_at.isoformat(),
            "updatedAt": job.updated_at.isoformat(),
        }

    @classmethod
    def _queryset(cls):
        return cls.model.objects.select_related("input_raw_material", "source_warehouse")

    @classmethod
    def find(cls, identifier, lock: bool = False) -> ProcessingJob:
        """Look a job up by job number (PJ00001) or numeric id."""
        queryset = cls._queryset()
        if lock:
            queryset = queryset.select_for_update(of=("self",))

        lookup = Q(job_number=str(identifier))
        if str(identifier).isdigit():
            lookup |= Q(id=int(identifier))

        job = queryset.filter(lookup).first()
        if not job:
            raise NotFoundError(cls.resource_name(), identifier)
        return job

    @classmethod
    def finished_good_for(cls, job: ProcessingJob) -> Optional[FinishedGood]:
        return FinishedGood.objects.filter(processing_job=job).first()

    @classmethod
    def unfinished_quantity(cls, job: ProcessingJob) -> Decimal:
        total = UnfinishedStock.objects.filter(processing_job=job).aggregate(total=Sum("quantity"))["total"]
        return total or ZERO

    @classmethod
    def by_product_quantity(cls, job: ProcessingJob) -> Decimal:
        return job.by_products.aggregate(total=Sum("quantity"))["total"] or ZERO

    @classmethod
    def list(cls,
             status: str = None,
             raw_material_id: int = None,
             warehouse_id: int = None,
             search: str = None,
             page: int = 1,
             per_page: int = 20) -> Dict[str, Any]:
        queryset = cls._queryset().prefetch_related("by_products")

        if status:
            queryset = queryset.filter(status=status)

        if raw_material_id:
            queryset = queryset.filter(input_raw_material_id=raw_material_id)

        if warehouse_id:
            queryset = queryset.filter(source_warehouse_id=warehouse_id)

        if search:
            queryset = queryset.filter(
                Q(job_number__icontains=search) | Q(input_raw_material__name__icontains=search)
            )

        jobs, pagination = paginate_queryset(queryset.order_by("-created_at"), page, per_page)

        return success_response({
            "processingJobs": [cls.serialize(job) for job in jobs],
            "pagination": pagination,
            "statuses": Status.values,
        })

    @classmethod
    def get(cls, identifier) -> Dict[str, Any]:
        job = cls.find(identifier)
        return success_response({"processingJob": cls.serialize(job)})

    @classmethod
    def _check_available(cls, raw_material_id: int, warehouse_id: int,
                         requested: Decimal, already_drawn: Decimal = ZERO) -> None:
        available = CleaningJobService.available_cleaned(
            raw_material_id, warehouse_id, lock=True
        ) + already_drawn
        if requested > available:
            available = max(available, ZERO)
            raise ConservationViolationError(
                f"Only {available} cleaned material is available for processing; requested {requested}",
                {"available": str(available), "requested": str(requested)}
            )

    @classmethod
    @ledger_atomic
    def create_processing_job(cls,
                              input_raw_material_id: int,
                              source_warehouse_id: int,
                              quantity_input,
                              started_at=None,
                              finished_at=None,
                              status: str = None,
                              user_id: int = None) -> Dict[str, Any]:
        material = RawMaterialProductService.require(input_raw_material_id, "inputRawMaterialId")
        warehouse = WarehouseService.require(source_warehouse_id, "sourceWarehouseId")
        quantity_input = parse_quantity(quantity_input, "quantityInput")

        status = status or Status.IN_PROGRESS
        if status != Status.IN_PROGRESS:
            raise InvalidRequestError(
                "New processing jobs start In-Progress; complete them with an update", "status"
            )

        started_at = parse_timestamp(started_at, "startedAt") or timezone.now()
        finished_at = parse_timestamp(finished_at, "finishedAt")
        if finished_at and finished_at < started_at:
            raise InvalidRequestError("finishedAt cannot be before startedAt", "finishedAt")

        cls._check_available(material.id, warehouse.id, quantity_input)

        job = cls.model.objects.create(
            job_number=generate_number("PJ"),
            input_raw_material=material,
            source_warehouse=warehouse,
            quantity_input=quantity_input,
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            created_by_id=user_id,
        )

        TransactionLogService.record(
            TransactionLog.Type.CREATE, "ProcessingJob", job.job_number,
            f"Processing {quantity_input} {material.sku_code} from {warehouse.name}", user_id
        )
        logger.info("Processing job %s created for %s x %s", job.job_number, material.sku_code, quantity_input)

        return success_response({
            "processingJob": cls.serialize(job)
        }, f"Processing job {job.job_number} created")

    @classmethod
    def _validate_by_products(cls, by_products: List[Dict]) -> List[Dict]:
        if not isinstance(by_products, list):
            raise InvalidRequestError("byProducts must be a list", "byProducts")

        cleaned = []
        for index, item in enumerate(by_products):
            if not isinstance(item, dict):
                raise InvalidRequestError(f"byProducts[{index}] must be an object", "byProducts")
            sku_code = (item.get("sku_code") or "").strip()
            if not sku_code:
                raise InvalidRequestError(f"byProducts[{index}].skuCode is required", "byProducts")
            cleaned.append({
                "sku_code": sku_code,
                "quantity": parse_quantity(item.get("quantity"), f"byProducts[{index}].quantity"),
                "warehouse": WarehouseService.require(
                    item.get("warehouse_id"), f"byProducts[{index}].warehouseId"
                ),
                "tag": item.get("tag") or "",
                "reason": item.get("reason") or "",
            })
        return cleaned

    @classmethod
    @ledger_atomic
    def update_processing_job(cls,
                              identifier,
                              quantity_input=None,
                              started_at=None,
                              finished_at=None,
                              status: str = None,
                              by_products: List[Dict] = None,
                              finished_good_warehouse_id: int = None,
                              user_id: int = None) -> Dict[str, Any]:
        job = cls.find(identifier, lock=True)
        previous = job.status

        if previous == Status.CANCELLED:
            raise InvalidRequestError(f"{job.job_number} is cancelled and cannot be changed", "status")

        new_status = status or previous
        if new_status not in Status.values:
            raise InvalidRequestError(f"Invalid status. Valid: {Status.values}", "status")
        if new_status != previous and new_status not in cls.ALLOWED_TRANSITIONS[previous]:
            raise InvalidRequestError(
                f"Cannot move {job.job_number} from {previous} to {new_status}", "status"
            )
        if new_status == Status.CANCELLED and cls.finished_good_for(job):
            raise InvalidRequestError(
                f"{job.job_number} already produced a finished good and cannot be cancelled", "status"
            )

        if started_at not in (None, ""):
            job.started_at = parse_timestamp(started_at, "startedAt")
        if finished_at not in (None, ""):
            job.finished_at = parse_timestamp(finished_at, "finishedAt")
        if job.started_at and job.finished_at and job.finished_at < job.started_at:
            raise InvalidRequestError("finishedAt cannot be before startedAt", "finishedAt")

        if quantity_input not in (None, ""):
            new_quantity = parse_quantity(quantity_input, "quantityInput")
            if new_quantity > job.quantity_input and new_status != Status.CANCELLED:
                cls._check_available(
                    job.input_raw_material_id, job.source_warehouse_id,
                    new_quantity, already_drawn=job.quantity_input
                )
            job.quantity_input = new_quantity

        if by_products is not None:
            cleaned = cls._validate_by_products(by_products)
            job.by_products.all().delete()
            ByProduct.objects.bulk_create([
                ByProduct(processing_job=job, **item) for item in cleaned
            ])

        by_product_total = cls.by_product_quantity(job)
        waste_total = by_product_total + cls.unfinished_quantity(job)
        if waste_total > job.quantity_input:
            raise ConservationViolationError(
                f"By-products and waste ({waste_total}) exceed the input ({job.quantity_input}) "
                f"of {job.job_number}",
                {"input": str(job.quantity_input), "byProducts": str(by_product_total),
                 "waste": str(waste_total)}
            )

        job.status = new_status
        if new_status in ProcessingJob.COMPLETED_STATUSES:
            if not job.finished_at:
                job.finished_at = timezone.now()
            job.save()
            cls._write_finished_good(job, waste_total, finished_good_warehouse_id)
        else:
            job.save()

        if new_status == Status.CANCELLED:
            logger.info("Processing job %s cancelled; %s returned to the cleaned pool",
                        job.job_number, job.quantity_input)

        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "ProcessingJob", job.job_number,
            f"Updated {job.job_number} ({previous} -> {new_status})", user_id
        )

        job = cls.find(job.id)
        return success_response({
            "processingJob": cls.serialize(job)
        }, f"Processing job {job.job_number} updated")

    @classmethod
    def _write_finished_good(cls, job: ProcessingJob, waste_total: Decimal,
                             warehouse_id: int = None) -> FinishedGood:
        """
        Create or refresh the single finished good of a completed job.

        Destination: the explicit ``finishedGoodWarehouseId``, else the
        existing finished good's warehouse, else the first by-product's,
        else the job's source warehouse.
        """
        existing = cls.finished_good_for(job)

        if warehouse_id not in (None, ""):
            warehouse = WarehouseService.require(warehouse_id, "finishedGoodWarehouseId")
        elif existing:
            warehouse = existing.warehouse
        else:
            first = job.by_products.order_by("id").select_related("warehouse").first()
            warehouse = first.warehouse if first else job.source_warehouse

        material = job.input_raw_material
        quantity = job.quantity_input - waste_total

        if existing:
            existing.quantity = quantity
            existing.warehouse = warehouse
            existing.save(update_fields=["quantity", "warehouse", "updated_at"])
            finished_good = existing
        else:
            finished_good = FinishedGood.objects.create(
                processing_job=job,
                sku_code=f"FG-{material.sku_code}",
                name=material.name,
                category=material.category,
                unit_of_measurement=material.unit_of_measurement,
                quantity=quantity,
                warehouse=warehouse,
            )

        logger.info("Processing job %s finished good %s x %s at %s",
                    job.job_number, finished_good.sku_code, quantity, warehouse.name)
        return finished_good
