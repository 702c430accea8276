import uuid as uuid_lib

from django.db import models
from django.db.models import Q


QUANTITY = {"max_digits": 15, "decimal_places": 4}


class Warehouse(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=100, unique=True)
    location = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Vendor(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    vendor_code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=200)
    address = models.TextField(blank=True, default="")
    contact_person = models.CharField(max_length=100, blank=True, default="")
    contact_number = models.CharField(max_length=30, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    gstin = models.CharField(max_length=20, blank=True, default="")

    # Bank details
    bank_name = models.CharField(max_length=100, blank=True, default="")
    account_holder = models.CharField(max_length=100, blank=True, default="")
    account_no = models.CharField(max_length=40, blank=True, default="")
    ifsc_code = models.CharField(max_length=20, blank=True, default="")

    enabled = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.vendor_code})"


class RawMaterialProduct(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    sku_code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)
    category = models.CharField(max_length=100, blank=True, default="")
    unit_of_measurement = models.CharField(max_length=20)
    min_reorder_level = models.DecimalField(**QUANTITY, default=0)
    vendor = models.ForeignKey(
        Vendor,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="products",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.sku_code})"


class PurchaseOrder(models.Model):
    class Status(models.TextChoices):
        CREATED = "Created", "Created"
        PARTIALLY_RECEIVED = "Partially Received", "Partially Received"
        RECEIVED = "Received", "Received"
        CANCELLED = "Cancelled", "Cancelled"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    po_number = models.CharField(max_length=30, unique=True)
    vendor = models.ForeignKey(
        Vendor, on_delete=models.PROTECT, related_name="purchase_orders"
    )
    order_date = models.DateField()
    expected_date = models.DateField(null=True, blank=True)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.CREATED
    )
    # Users live in the external auth service; only the id is kept.
    created_by_id = models.PositiveBigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.po_number


class PurchaseOrderItem(models.Model):
    class Status(models.TextChoices):
        PENDING = "Pending", "Pending"
        PARTIALLY_RECEIVED = "Partially Received", "Partially Received"
        RECEIVED = "Received", "Received"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    purchase_order = models.ForeignKey(
        PurchaseOrder, on_delete=models.CASCADE, related_name="items"
    )
    raw_material = models.ForeignKey(
        RawMaterialProduct, on_delete=models.PROTECT, related_name="purchase_order_items"
    )
    quantity_ordered = models.DecimalField(**QUANTITY)
    quantity_received = models.DecimalField(**QUANTITY, default=0)
    rate = models.DecimalField(**QUANTITY, default=0)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.purchase_order.po_number} – {self.raw_material.sku_code}"


class StockEntry(models.Model):
    """
    Append-only movement ledger. IN and RELEASED add to the balance of
    (raw_material, warehouse); OUT and RESERVED subtract from it.
    """

    class EntryType(models.TextChoices):
        IN = "IN", "In"
        OUT = "OUT", "Out"
        RESERVED = "RESERVED", "Reserved"
        RELEASED = "RELEASED", "Released"

    class ReferenceType(models.TextChoices):
        PURCHASE_ORDER_ITEM = "PO_ITEM", "Purchase Order Item"
        CLEANING_JOB = "CLEANING_JOB", "Cleaning Job"
        PROCESSING_JOB = "PROCESSING_JOB", "Processing Job"
        MANUAL = "MANUAL", "Manual"

    INBOUND_TYPES = (EntryType.IN, EntryType.RELEASED)
    OUTBOUND_TYPES = (EntryType.OUT, EntryType.RESERVED)

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    raw_material = models.ForeignKey(
        RawMaterialProduct, on_delete=models.PROTECT, related_name="stock_entries"
    )
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="stock_entries"
    )
    batch_number = models.CharField(max_length=50, blank=True, default="")
    expiry_date = models.DateField(null=True, blank=True)
    quantity = models.DecimalField(**QUANTITY)
    entry_type = models.CharField(max_length=10, choices=EntryType.choices)
    reference_type = models.CharField(
        max_length=20, choices=ReferenceType.choices, default=ReferenceType.MANUAL
    )
    reference_id = models.CharField(max_length=50, blank=True, default="", db_index=True)
    status = models.CharField(max_length=30, blank=True, default="")
    reason_code = models.CharField(max_length=50, blank=True, default="")
    user_id = models.PositiveBigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name_plural = "stock entries"
        indexes = [
            models.Index(fields=["raw_material", "warehouse"]),
            models.Index(fields=["entry_type", "created_at"]),
        ]

    def __str__(self):
        return f"{self.entry_type} {self.quantity} {self.raw_material.sku_code} @ {self.warehouse.name}"

class CurrentStock(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    raw_material = models.ForeignKey(
        RawMaterialProduct, on_delete=models.PROTECT, related_name="current_stocks"
    )
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="current_stocks"
    )
    current_quantity = models.DecimalField(**QUANTITY, default=0)
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [("raw_material", "warehouse")]
        ordering = ["raw_material__name", "warehouse__name"]

    def __str__(self):
        return f"{self.raw_material.sku_code} @ {self.warehouse.name}: {self.current_quantity}"


class CleaningJob(models.Model):
    class Status(models.TextChoices):
        SENT = "Sent", "Sent"
        IN_PROGRESS = "In-Progress", "In-Progress"
        CLEANED = "Cleaned", "Cleaned"
        FINISHED = "Finished", "Finished"
        CANCELLED = "Cancelled", "Cancelled"

    OPEN_STATUSES = (Status.SENT, Status.IN_PROGRESS)
    COMPLETED_STATUSES = (Status.CLEANED, Status.FINISHED)

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    job_number = models.CharField(max_length=20, unique=True)
    raw_material = models.ForeignKey(
        RawMaterialProduct, on_delete=models.PROTECT, related_name="cleaning_jobs"
    )
    from_warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="outgoing_cleaning_jobs"
    )
    to_warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="incoming_cleaning_jobs"
    )
    quantity = models.DecimalField(**QUANTITY)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.SENT
    )
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    created_by_id = models.PositiveBigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["raw_material", "to_warehouse", "status"]),
        ]

    def __str__(self):
        return self.job_number

    @property
    def is_completed(self):
        return self.status in self.COMPLETED_STATUSES


class CleaningLog(models.Model):
    cleaning_job = models.ForeignKey(
        CleaningJob, on_delete=models.CASCADE, related_name="logs"
    )
    status = models.CharField(max_length=20, blank=True, default="")
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.cleaning_job.job_number}: {self.message}"


class ProcessingJob(models.Model):
    class Status(models.TextChoices):
        IN_PROGRESS = "In-Progress", "In-Progress"
        FINISHED = "Finished", "Finished"
        COMPLETED = "Completed", "Completed"
        CANCELLED = "Cancelled", "Cancelled"

    COMPLETED_STATUSES = (Status.FINISHED, Status.COMPLETED)

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    job_number = models.CharField(max_length=20, unique=True)
    input_raw_material = models.ForeignKey(
        RawMaterialProduct, on_delete=models.PROTECT, related_name="processing_jobs"
    )
    # Warehouse whose cleaned pool this job draws from.
    source_warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="processing_jobs"
    )
    quantity_input = models.DecimalField(**QUANTITY)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.IN_PROGRESS
    )
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    created_by_id = models.PositiveBigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["input_raw_material", "source_warehouse", "status"]),
        ]

    def __str__(self):
        return self.job_number

    @property
    def is_completed(self):
        return self.status in self.COMPLETED_STATUSES


class ByProduct(models.Model):
    processing_job = models.ForeignKey(
        ProcessingJob, on_delete=models.CASCADE, related_name="by_products"
    )
    sku_code = models.CharField(max_length=50)
    quantity = models.DecimalField(**QUANTITY)
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="by_products"
    )
    tag = models.CharField(max_length=50, blank=True, default="")
    reason = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.sku_code}: {self.quantity}"


class FinishedGood(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    processing_job = models.OneToOneField(
        ProcessingJob, on_delete=models.CASCADE, related_name="finished_good"
    )
    sku_code = models.CharField(max_length=60)
    name = models.CharField(max_length=200)
    category = models.CharField(max_length=100, blank=True, default="")
    unit_of_measurement = models.CharField(max_length=20)
    quantity = models.DecimalField(**QUANTITY)
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="finished_goods"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.sku_code}: {self.quantity}"


class UnfinishedStock(models.Model):
    """Waste or rejects attributed to exactly one cleaning or processing job."""

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    cleaning_job = models.ForeignKey(
        CleaningJob,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="unfinished_stocks",
    )
    processing_job = models.ForeignKey(
        ProcessingJob,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="unfinished_stocks",
    )
    sku_code = models.CharField(max_length=80)
    quantity = models.DecimalField(**QUANTITY)
    reason_code = models.CharField(max_length=50, blank=True, default="")
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="unfinished_stocks"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "unfinished stock"
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(cleaning_job__isnull=False, processing_job__isnull=True)
                    | Q(cleaning_job__isnull=True, processing_job__isnull=False)
                ),
                name="unfinished_stock_single_job",
            ),
        ]

    def __str__(self):
        return f"{self.sku_code}: {self.quantity}"


class RMQualityReport(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    raw_material_name = models.CharField(max_length=200)
    variety = models.CharField(max_length=100, blank=True, default="")
    supplier = models.CharField(max_length=200, blank=True, default="")
    grn = models.CharField(max_length=50, db_index=True)
    created_by_id = models.PositiveBigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "RM quality report"

    def __str__(self):
        return f"{self.raw_material_name} ({self.grn})"


class RMQualityParameter(models.Model):
    report = models.ForeignKey(
        RMQualityReport, on_delete=models.CASCADE, related_name="parameters"
    )
    parameter = models.CharField(max_length=100)
    standard = models.CharField(max_length=100, blank=True, default="")
    result = models.CharField(max_length=100, blank=True, default="")

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return self.parameter


class TransactionLog(models.Model):
    class Type(models.TextChoices):
        CREATE = "CREATE", "Create"
        UPDATE = "UPDATE", "Update"
        DELETE = "DELETE", "Delete"

    type = models.CharField(max_length=10, choices=Type.choices)
    entity = models.CharField(max_length=50, db_index=True)
    entity_id = models.CharField(max_length=50)
    user_id = models.PositiveBigIntegerField(null=True, blank=True)
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.type} {self.entity}#{self.entity_id}"


class NumberSequence(models.Model):
    """Per-key counter behind human-readable numbers (CJ00001, PO-20250101-0001)."""

    key = models.CharField(max_length=50, unique=True)
    last_value = models.PositiveBigIntegerField(default=0)

    def __str__(self):
        return f"{self.key}={self.last_value}"
