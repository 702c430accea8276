import logging
from typing import Dict, Any, Tuple
from decimal import Decimal

from django.db.models import Q, Sum, Count
from django.utils import timezone

from rawmaterial.models import (
    CleaningJob, CleaningLog, ProcessingJob, UnfinishedStock, StockEntry,
    RawMaterialProduct, Warehouse, TransactionLog,
)
from rawmaterial.services.base_service import (
    BaseService, success_response, paginate_queryset, ledger_atomic,
    generate_number, parse_quantity, parse_timestamp, isoformat,
    InvalidRequestError, NotFoundError, ConservationViolationError, ZERO,
)
from rawmaterial.services.log_service import TransactionLogService
from rawmaterial.services.product_service import RawMaterialProductService
from rawmaterial.services.stock_service import StockEntryService, CurrentStockService
from rawmaterial.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)

Status = CleaningJob.Status


class CleaningJobService(BaseService):
    """
    Cleaning moves raw material out of ``from_warehouse`` into the cleaned
    pool of ``to_warehouse``. Stock is reserved when the job is created and
    the reservation is either consumed (Cleaned/Finished) or released
    (Cancelled).
    """

    model = CleaningJob

    ALLOWED_TRANSITIONS = {
        Status.SENT: {Status.IN_PROGRESS, Status.CLEANED, Status.FINISHED, Status.CANCELLED},
        Status.IN_PROGRESS: {Status.SENT, Status.CLEANED, Status.FINISHED, Status.CANCELLED},
        Status.CLEANED: {Status.FINISHED},
        Status.FINISHED: {Status.CLEANED},
        Status.CANCELLED: set(),
    }

    @classmethod
    def resource_name(cls) -> str:
        return "Cleaning job"

    @classmethod
    def serialize(cls, job: CleaningJob, include_details: bool = False) -> Dict[str, Any]:
        waste = cls.waste_quantity(job)

        data = {
            "id": job.id,
            "uuid": str(job.uuid),
            "jobNumber": job.job_number,
            "rawMaterialId": job.raw_material_id,
            "rawMaterial": {
                "id": job.raw_material.id,
                "skuCode": job.raw_material.sku_code,
                "name": job.raw_material.name,
                "unitOfMeasurement": job.raw_material.unit_of_measurement,
            },
            "fromWarehouseId": job.from_warehouse_id,
            "fromWarehouse": {"id": job.from_warehouse.id, "name": job.from_warehouse.name},
            "toWarehouseId": job.to_warehouse_id,
            "toWarehouse": {"id": job.to_warehouse.id, "name": job.to_warehouse.name},
            "quantity": str(job.quantity),
            "wastageQuantity": str(waste),
            "netQuantity": str(cls.net_yield(job)),
            "status": job.status,
            "startedAt": isoformat(job.started_at),
            "finishedAt": isoformat(job.finished_at),
            "createdAt": job.created_at.isoformat(),
            "updatedAt": job.updated_at.isoformat(),
        }

        if include_details:
            data["unfinishedStocks"] = [
                {
                    "id": u.id,
                    "skuCode": u.sku_code,
                    "quantity": str(u.quantity),
                    "reasonCode": u.reason_code,
                    "warehouseId": u.warehouse_id,
                }
                for u in job.unfinished_stocks.order_by("created_at", "id")
            ]
            data["logs"] = [
                {
                    "id": log.id,
                    "status": log.status,
                    "message": log.message,
                    "createdAt": log.created_at.isoformat(),
                }
                for log in job.logs.all()
            ]

        return data

    @classmethod
    def _queryset(cls):
        return cls.model.objects.select_related("raw_material", "from_warehouse", "to_warehouse")

    @classmethod
    def find(cls, identifier, lock: bool = False) -> CleaningJob:
        """Look a job up by job number (CJ00001) or numeric id."""
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
    def waste_quantity(cls, job: CleaningJob) -> Decimal:
        if hasattr(job, "waste_total"):
            return job.waste_total or ZERO
        total = job.unfinished_stocks.aggregate(total=Sum("quantity"))["total"]
        return total or ZERO

    @classmethod
    def net_yield(cls, job: CleaningJob) -> Decimal:
        return job.quantity - cls.waste_quantity(job)

    @classmethod
    def _log(cls, job: CleaningJob, message: str) -> None:
        CleaningLog.objects.create(cleaning_job=job, status=job.status, message=message)

    @classmethod
    def list(cls,
             status: str = None,
             raw_material_id: int = None,
             warehouse_id: int = None,
             search: str = None,
             page: int = 1,
             per_page: int = 20) -> Dict[str, Any]:
        queryset = cls._queryset().annotate(waste_total=Sum("unfinished_stocks__quantity"))

        if status:
            queryset = queryset.filter(status=status)

        if raw_material_id:
            queryset = queryset.filter(raw_material_id=raw_material_id)

        if warehouse_id:
            queryset = queryset.filter(
                Q(from_warehouse_id=warehouse_id) | Q(to_warehouse_id=warehouse_id)
            )

        if search:
            queryset = queryset.filter(
                Q(job_number__icontains=search) | Q(raw_material__name__icontains=search)
            )

        jobs, pagination = paginate_queryset(queryset.order_by("-created_at"), page, per_page)

        return success_response({
            "cleaningJobs": [cls.serialize(job) for job in jobs],
            "pagination": pagination,
            "statuses": Status.values,
        })

    @classmethod
    def get(cls, identifier) -> Dict[str, Any]:
        job = cls.find(identifier)
        return success_response({"cleaningJob": cls.serialize(job, include_details=True)})

    @classmethod
    @ledger_atomic
    def create_cleaning_job(cls,
                            raw_material_id: int,
                            from_warehouse_id: int,
                            to_warehouse_id: int,
                            quantity,
                            status: str = None,
                            started_at=None,
                            finished_at=None,
                            user_id: int = None) -> Dict[str, Any]:
        material = RawMaterialProductService.require(raw_material_id)
        source = WarehouseService.require(from_warehouse_id, "fromWarehouseId")
        destination = WarehouseService.require(to_warehouse_id, "toWarehouseId")
        quantity = parse_quantity(quantity)

        status = status or Status.SENT
        if status not in Status.values or status == Status.CANCELLED:
            raise InvalidRequestError(
                f"Invalid status for a new job. Valid: {[s for s in Status.values if s != Status.CANCELLED]}",
                "status"
            )

        started_at = parse_timestamp(started_at, "startedAt") or timezone.now()
        finished_at = parse_timestamp(finished_at, "finishedAt")
        if finished_at and finished_at < started_at:
            raise InvalidRequestError("finishedAt cannot be before startedAt", "finishedAt")

        # Reserve first so an insufficient balance fails before anything is written.
        CurrentStockService.decrement(material.id, source.id, quantity)

        job = cls.model.objects.create(
            job_number=generate_number("CJ"),
            raw_material=material,
            from_warehouse=source,
            to_warehouse=destination,
            quantity=quantity,
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            created_by_id=user_id,
        )

        StockEntryService.record_entry(
            raw_material_id=material.id,
            warehouse_id=source.id,
            quantity=quantity,
            entry_type=StockEntry.EntryType.RESERVED,
            reference_type=StockEntry.ReferenceType.CLEANING_JOB,
            reference_id=job.job_number,
            status="Reserved",
            user_id=user_id,
        )
        cls._log(job, f"Job created; {quantity} {material.unit_of_measurement} reserved at {source.name}")

        if status in CleaningJob.COMPLETED_STATUSES:
            cls._complete(job, user_id)
            job.save(update_fields=["finished_at", "updated_at"])

        TransactionLogService.record(
            TransactionLog.Type.CREATE, "CleaningJob", job.job_number,
            f"Cleaning {quantity} {material.sku_code} from {source.name} to {destination.name}", user_id
        )
        logger.info("Cleaning job %s created for %s x %s", job.job_number, material.sku_code, quantity)

        return success_response({
            "cleaningJob": cls.serialize(job, include_details=True)
        }, f"Cleaning job {job.job_number} created")

    @classmethod
    @ledger_atomic
    def update_cleaning_job(cls,
                            identifier,
                            quantity=None,
                            status: str = None,
                            started_at=None,
                            finished_at=None,
                            leftover_quantity=None,
                            reason_code: str = None,
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

        leftover = None
        if leftover_quantity not in (None, ""):
            leftover = parse_quantity(leftover_quantity, "leftoverQuantity", allow_zero=True)
        if leftover and new_status not in CleaningJob.COMPLETED_STATUSES:
            raise InvalidRequestError(
                "leftoverQuantity can only be recorded when the job is Cleaned or Finished",
                "leftoverQuantity"
            )

        if started_at not in (None, ""):
            job.started_at = parse_timestamp(started_at, "startedAt")
        if finished_at not in (None, ""):
            job.finished_at = parse_timestamp(finished_at, "finishedAt")
        if job.started_at and job.finished_at and job.finished_at < job.started_at:
            raise InvalidRequestError("finishedAt cannot be before startedAt", "finishedAt")

        if quantity not in (None, ""):
            new_quantity = parse_quantity(quantity)
            if new_quantity != job.quantity:
                if previous not in CleaningJob.OPEN_STATUSES:
                    raise InvalidRequestError(
                        "quantity can only change before the job is completed", "quantity"
                    )
                cls._adjust_reservation(job, new_quantity - job.quantity, user_id)
                job.quantity = new_quantity

        if new_status != previous:
            job.status = new_status
            if new_status == Status.CANCELLED:
                cls._cancel(job, user_id)
            elif (new_status in CleaningJob.COMPLETED_STATUSES
                    and previous in CleaningJob.OPEN_STATUSES):
                cls._complete(job, user_id)
            cls._log(job, f"Status changed from {previous} to {new_status}")

        job.save()

        if leftover:
            cls.record_waste(job, leftover, reason_code)

        TransactionLogService.record(
            TransactionLog.Type.UPDATE, "CleaningJob", job.job_number,
            f"Updated {job.job_number} ({previous} -> {job.status})", user_id
        )

        return success_response({
            "cleaningJob": cls.serialize(job, include_details=True)
        }, f"Cleaning job {job.job_number} updated")

    @classmethod
    def _entry(cls, job: CleaningJob, entry_type: str, quantity: Decimal,
               status: str, reason_code: str, user_id: int = None) -> StockEntry:
        return StockEntryService.record_entry(
            raw_material_id=job.raw_material_id,
            warehouse_id=job.from_warehouse_id,
            quantity=quantity,
            entry_type=entry_type,
            reference_type=StockEntry.ReferenceType.CLEANING_JOB,
            reference_id=job.job_number,
            status=status,
            reason_code=reason_code,
            user_id=user_id,
        )

    @classmethod
    def _reservations(cls, job: CleaningJob):
        return StockEntry.objects.filter(
            reference_type=StockEntry.ReferenceType.CLEANING_JOB,
            reference_id=job.job_number,
            entry_type=StockEntry.EntryType.RESERVED,
        )

    @classmethod
    def _adjust_reservation(cls, job: CleaningJob, delta: Decimal, user_id: int = None) -> None:
        if delta > 0:
            CurrentStockService.decrement(job.raw_material_id, job.from_warehouse_id, delta)
            cls._entry(job, StockEntry.EntryType.RESERVED, delta, "Reserved", "QUANTITY_INCREASED", user_id)
        else:
            CurrentStockService.increment(job.raw_material_id, job.from_warehouse_id, -delta)
            cls._entry(job, StockEntry.EntryType.RELEASED, -delta, "Released", "QUANTITY_DECREASED", user_id)
        cls._log(job, f"Quantity changed by {delta}; reservation adjusted")

    @classmethod
    def _complete(cls, job: CleaningJob, user_id: int = None) -> None:
        """Turn the open reservation into a finalized consumption."""
        cls._entry(job, StockEntry.EntryType.RELEASED, job.quantity, "Converted", "RESERVATION_CONVERTED", user_id)
        cls._entry(job, StockEntry.EntryType.OUT, job.quantity, "Consumed", "CLEANING_CONSUMED", user_id)
        cls._reservations(job).update(status="Consumed")
        if not job.finished_at:
            job.finished_at = timezone.now()
        logger.info("Cleaning job %s completed; %s consumed", job.job_number, job.quantity)

    @classmethod
    def _cancel(cls, job: CleaningJob, user_id: int = None) -> None:
        CurrentStockService.increment(job.raw_material_id, job.from_warehouse_id, job.quantity)
        cls._entry(job, StockEntry.EntryType.RELEASED, job.quantity, "Released", "JOB_CANCELLED", user_id)
        cls._reservations(job).update(status="Released")
        logger.info("Cleaning job %s cancelled; %s released", job.job_number, job.quantity)

    @classmethod
    def check_waste(cls, job: CleaningJob, waste_total: Decimal, added: Decimal) -> None:
        """
        ``waste_total`` is the job's waste after the change, ``added`` the
        increase it brings. Waste can never exceed the job input, and new
        waste cannot take back cleaned material processing already drew.
        """
        if waste_total > job.quantity:
            raise ConservationViolationError(
                f"Waste {waste_total} exceeds the {job.quantity} sent to {job.job_number}",
                {"jobNumber": job.job_number, "quantity": str(job.quantity), "waste": str(waste_total)}
            )
        if added > 0:
            available = cls.available_cleaned(job.raw_material_id, job.to_warehouse_id, lock=True)
            if added > available:
                raise ConservationViolationError(
                    f"Only {max(available, ZERO)} cleaned material left at {job.to_warehouse.name}; "
                    f"cannot book {added} more waste",
                    {"available": str(max(available, ZERO)), "requested": str(added)}
                )

    @classmethod
    def record_waste(cls, job: CleaningJob, quantity: Decimal, reason_code: str = None,
                     warehouse_id: int = None, sku_code: str = None) -> UnfinishedStock:
        """Attribute leftover material to a completed job. Caller holds the job lock."""
        if not job.is_completed:
            raise InvalidRequestError(
                f"{job.job_number} must be Cleaned or Finished before waste is recorded", "status"
            )

        cls.check_waste(job, cls.waste_quantity(job) + quantity, quantity)

        warehouse_id = warehouse_id or job.to_warehouse_id
        stamp = int(timezone.now().timestamp() * 1000)
        unfinished = UnfinishedStock.objects.create(
            cleaning_job=job,
            sku_code=sku_code or f"{job.raw_material_id}-UNF-{stamp}",
            quantity=quantity,
            reason_code=reason_code or "",
            warehouse_id=warehouse_id,
        )
        cls._log(job, f"Recorded {quantity} leftover ({reason_code or 'no reason'})")
        logger.info("Cleaning job %s waste %s recorded", job.job_number, quantity)
        return unfinished

    # ---------------------------------------------------------------
    # Cleaned pool
    # ---------------------------------------------------------------

    @classmethod
    def _pool_totals(cls, raw_material_id: int = None, warehouse_id: int = None,
                     lock: bool = False) -> Dict[Tuple[int, int], Dict[str, Decimal]]:
        jobs = CleaningJob.objects.filter(status__in=CleaningJob.COMPLETED_STATUSES)
        waste = UnfinishedStock.objects.filter(cleaning_job__status__in=CleaningJob.COMPLETED_STATUSES)
        processing = ProcessingJob.objects.exclude(status=ProcessingJob.Status.CANCELLED)

        if raw_material_id:
            jobs = jobs.filter(raw_material_id=raw_material_id)
            waste = waste.filter(cleaning_job__raw_material_id=raw_material_id)
            processing = processing.filter(input_raw_material_id=raw_material_id)
        if warehouse_id:
            jobs = jobs.filter(to_warehouse_id=warehouse_id)
            waste = waste.filter(cleaning_job__to_warehouse_id=warehouse_id)
            processing = processing.filter(source_warehouse_id=warehouse_id)

        if lock:
            list(jobs.select_for_update().values_list("id", flat=True))
            list(processing.select_for_update().values_list("id", flat=True))

        totals: Dict[Tuple[int, int], Dict[str, Decimal]] = {}

        def bucket(key):
            return totals.setdefault(key, {
                "jobs": 0, "gross": ZERO, "waste": ZERO, "processed": ZERO,
            })

        for row in jobs.values("raw_material_id", "to_warehouse_id").annotate(
                gross=Sum("quantity"), jobs=Count("id")).order_by():
            entry = bucket((row["raw_material_id"], row["to_warehouse_id"]))
            entry["gross"] = row["gross"] or ZERO
            entry["jobs"] = row["jobs"]

        for row in waste.values("cleaning_job__raw_material_id", "cleaning_job__to_warehouse_id").annotate(
                total=Sum("quantity")).order_by():
            key = (row["cleaning_job__raw_material_id"], row["cleaning_job__to_warehouse_id"])
            bucket(key)["waste"] = row["total"] or ZERO

        for row in processing.values("input_raw_material_id", "source_warehouse_id").annotate(
                total=Sum("quantity_input")).order_by():
            key = (row["input_raw_material_id"], row["source_warehouse_id"])
            bucket(key)["processed"] = row["total"] or ZERO

        return totals

    @classmethod
    def available_cleaned(cls, raw_material_id: int, warehouse_id: int, lock: bool = False) -> Decimal:
        """Cleaned-but-unprocessed quantity at one warehouse. Not clamped."""
        totals = cls._pool_totals(raw_material_id, warehouse_id, lock=lock)
        entry = totals.get((int(raw_material_id), int(warehouse_id)))
        if not entry:
            return ZERO
        return entry["gross"] - entry["waste"] - entry["processed"]

    @classmethod
    def get_cleaned_materials(cls, raw_material_id: int = None, warehouse_id: int = None) -> Dict[str, Any]:
        totals = cls._pool_totals(raw_material_id, warehouse_id)

        materials = RawMaterialProduct.objects.in_bulk({key[0] for key in totals})
        warehouses = Warehouse.objects.in_bulk({key[1] for key in totals})

        rows = []
        for (material_id, wh_id), entry in totals.items():
            if not entry["jobs"]:
                continue
            material = materials[material_id]
            warehouse = warehouses[wh_id]
            net = entry["gross"] - entry["waste"]
            rows.append({
                "rawMaterialId": material_id,
                "skuCode": material.sku_code,
                "name": material.name,
                "unitOfMeasurement": material.unit_of_measurement,
                "warehouseId": wh_id,
                "warehouseName": warehouse.name,
                "jobCount": entry["jobs"],
                "totalQuantity": str(entry["gross"]),
                "wastageQuantity": str(entry["waste"]),
                "netQuantity": str(net),
                "processedQuantity": str(entry["processed"]),
                "availableQuantity": str(max(net - entry["processed"], ZERO)),
            })

        rows.sort(key=lambda r: (r["name"], r["warehouseName"]))

        return success_response({
            "cleanedMaterials": rows,
            "count": len(rows),
        })
