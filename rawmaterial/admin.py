from django.contrib import admin
from django.db.models import Sum
from django.utils.translation import gettext_lazy as _
from unfold.admin import ModelAdmin, TabularInline, StackedInline
from unfold.decorators import display
from unfold.contrib.filters.admin import RangeDateFilter, RangeDateTimeFilter

from .models import (
    Warehouse, Vendor, RawMaterialProduct, PurchaseOrder, PurchaseOrderItem,
    StockEntry, CurrentStock, CleaningJob, CleaningLog, ProcessingJob, ByProduct,
    FinishedGood, UnfinishedStock, RMQualityReport, RMQualityParameter, TransactionLog,
)


class ReadOnlyAdminMixin:
    """Ledger rows are written by the services only."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Warehouse)
class WarehouseAdmin(ModelAdmin):
    list_display = ['id', 'name', 'location', 'stock_total', 'created_at']
    search_fields = ['name', 'location']
    readonly_fields = ['uuid', 'created_at', 'updated_at']

    @display(description=_("Stock on hand"))
    def stock_total(self, obj):
        total = obj.current_stocks.aggregate(total=Sum('current_quantity'))['total']
        return total or 0


@admin.register(Vendor)
class VendorAdmin(ModelAdmin):
    list_display = ['vendor_code', 'name', 'contact_person', 'contact_number', 'enabled_badge']
    list_filter = ['enabled']
    search_fields = ['vendor_code', 'name', 'gstin']
    readonly_fields = ['uuid', 'vendor_code', 'created_at', 'updated_at']
    list_filter_submit = True

    fieldsets = (
        (_('Vendor'), {
            'fields': ('vendor_code', 'name', 'address', 'contact_person', 'contact_number', 'email', 'gstin', 'enabled'),
            'classes': ['tab'],
        }),
        (_('Bank details'), {
            'fields': ('bank_name', 'account_holder', 'account_no', 'ifsc_code'),
            'classes': ['tab'],
        }),
    )

    @display(description=_("Status"), label=True)
    def enabled_badge(self, obj):
        if obj.enabled:
            return 'success', _('Enabled')
        return 'danger', _('Disabled')


@admin.register(RawMaterialProduct)
class RawMaterialProductAdmin(ModelAdmin):
    list_display = ['sku_code', 'name', 'category', 'unit_of_measurement', 'min_reorder_level', 'vendor']
    list_filter = ['category']
    search_fields = ['sku_code', 'name']
    readonly_fields = ['uuid', 'created_at', 'updated_at']


class PurchaseOrderItemInline(TabularInline):
    model = PurchaseOrderItem
    extra = 0
    fields = ('raw_material', 'quantity_ordered', 'quantity_received', 'rate', 'status')
    readonly_fields = ('quantity_received', 'status')


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(ModelAdmin):
    list_display = ['po_number', 'vendor', 'order_date', 'expected_date', 'status_badge']
    list_filter = [
        'status',
        ('order_date', RangeDateFilter),
    ]
    search_fields = ['po_number', 'vendor__name']
    readonly_fields = ['uuid', 'po_number', 'status', 'created_by_id', 'created_at', 'updated_at']
    inlines = [PurchaseOrderItemInline]
    list_filter_submit = True

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        colors = {
            PurchaseOrder.Status.CREATED: 'info',
            PurchaseOrder.Status.PARTIALLY_RECEIVED: 'warning',
            PurchaseOrder.Status.RECEIVED: 'success',
            PurchaseOrder.Status.CANCELLED: 'danger',
        }
        return colors.get(obj.status, 'info'), obj.get_status_display()


@admin.register(StockEntry)
class StockEntryAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['id', 'raw_material', 'warehouse', 'entry_type_badge', 'quantity', 'reference_type', 'reference_id', 'status', 'created_at']
    list_filter = [
        'entry_type',
        'reference_type',
        'warehouse',
        ('created_at', RangeDateTimeFilter),
    ]
    search_fields = ['raw_material__sku_code', 'raw_material__name', 'reference_id', 'batch_number']
    list_filter_submit = True

    @display(description=_("Type"), label=True)
    def entry_type_badge(self, obj):
        if obj.entry_type in StockEntry.INBOUND_TYPES:
            return 'success', obj.get_entry_type_display()
        return 'warning', obj.get_entry_type_display()


@admin.register(CurrentStock)
class CurrentStockAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['raw_material', 'warehouse', 'current_quantity', 'last_updated']
    list_filter = ['warehouse']
    search_fields = ['raw_material__sku_code', 'raw_material__name']


class CleaningLogInline(TabularInline):
    model = CleaningLog
    extra = 0
    fields = ('status', 'message', 'created_at')
    readonly_fields = ('status', 'message', 'created_at')
    can_delete = False


class CleaningUnfinishedInline(TabularInline):
    model = UnfinishedStock
    fk_name = 'cleaning_job'
    extra = 0
    fields = ('sku_code', 'quantity', 'reason_code', 'warehouse')
    readonly_fields = fields
    can_delete = False


@admin.register(CleaningJob)
class CleaningJobAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['job_number', 'raw_material', 'from_warehouse', 'to_warehouse', 'quantity', 'status_badge', 'started_at', 'finished_at']
    list_filter = ['status', 'to_warehouse']
    search_fields = ['job_number', 'raw_material__name']
    inlines = [CleaningLogInline, CleaningUnfinishedInline]

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        if obj.status == CleaningJob.Status.CANCELLED:
            return 'danger', obj.get_status_display()
        if obj.is_completed:
            return 'success', obj.get_status_display()
        return 'warning', obj.get_status_display()


class ByProductInline(TabularInline):
    model = ByProduct
    extra = 0
    fields = ('sku_code', 'quantity', 'warehouse', 'tag', 'reason')
    readonly_fields = fields
    can_delete = False


class FinishedGoodInline(StackedInline):
    model = FinishedGood
    extra = 0
    fields = ('sku_code', 'name', 'quantity', 'unit_of_measurement', 'warehouse')
    readonly_fields = fields
    can_delete = False


@admin.register(ProcessingJob)
class ProcessingJobAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['job_number', 'input_raw_material', 'source_warehouse', 'quantity_input', 'status_badge', 'started_at', 'finished_at']
    list_filter = ['status', 'source_warehouse']
    search_fields = ['job_number', 'input_raw_material__name']
    inlines = [ByProductInline, FinishedGoodInline]

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        if obj.status == ProcessingJob.Status.CANCELLED:
            return 'danger', obj.get_status_display()
        if obj.is_completed:
            return 'success', obj.get_status_display()
        return 'warning', obj.get_status_display()


@admin.register(UnfinishedStock)
class UnfinishedStockAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['sku_code', 'quantity', 'reason_code', 'warehouse', 'job_number', 'created_at']
    list_filter = ['warehouse']
    search_fields = ['sku_code', 'reason_code']

    @display(description=_("Job"))
    def job_number(self, obj):
        job = obj.cleaning_job or obj.processing_job
        return job.job_number if job else "-"


class RMQualityParameterInline(TabularInline):
    model = RMQualityParameter
    extra = 0
    fields = ('parameter', 'standard', 'result')


@admin.register(RMQualityReport)
class RMQualityReportAdmin(ModelAdmin):
    list_display = ['grn', 'raw_material_name', 'variety', 'supplier', 'created_at']
    search_fields = ['grn', 'raw_material_name', 'supplier']
    readonly_fields = ['uuid', 'created_by_id', 'created_at', 'updated_at']
    inlines = [RMQualityParameterInline]


@admin.register(TransactionLog)
class TransactionLogAdmin(ReadOnlyAdminMixin, ModelAdmin):
    list_display = ['id', 'type', 'entity', 'entity_id', 'user_id', 'description', 'created_at']
    list_filter = [
        'type',
        'entity',
        ('created_at', RangeDateTimeFilter),
    ]
    search_fields = ['entity_id', 'description']
    list_filter_submit = True
