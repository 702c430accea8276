from decimal import Decimal

from rawmaterial.models import Vendor, Warehouse, RawMaterialProduct
from rawmaterial.services import (
    PurchaseOrderService, PurchaseOrderItemService, CurrentStockService,
    CleaningJobService, ProcessingJobService,
)


class LedgerFixtureMixin:
    """Vendor, three warehouses and one raw material, plus shortcuts for each ledger stage."""

    def setUp(self):
        super().setUp()
        self.vendor = Vendor.objects.create(vendor_code="VEND-00001", name="Agro Supplies")
        self.raw_store = Warehouse.objects.create(name="Raw Store", location="Dock 1")
        self.clean_store = Warehouse.objects.create(name="Clean Store", location="Hall B")
        self.mill = Warehouse.objects.create(name="Mill", location="Plant 2")
        self.material = RawMaterialProduct.objects.create(
            sku_code="RM-WHEAT",
            name="Wheat",
            category="Grain",
            unit_of_measurement="kg",
            min_reorder_level=Decimal("50"),
            vendor=self.vendor,
        )

    def create_order(self, quantity, material=None):
        result = PurchaseOrderService.create_purchase_order(
            vendor_id=self.vendor.id,
            order_date="2025-01-10",
            items=[{
                "raw_material_id": (material or self.material).id,
                "quantity_ordered": quantity,
                "rate": "2.50",
            }],
        )
        return result["purchaseOrder"]

    def receive(self, quantity, warehouse=None, ordered=None):
        order = self.create_order(ordered or quantity)
        item_id = order["items"][0]["id"]
        PurchaseOrderItemService.update_purchase_order_item(
            item_id,
            quantity_received=quantity,
            warehouse_id=(warehouse or self.raw_store).id,
        )
        return item_id

    def balance(self, warehouse=None, material=None):
        return CurrentStockService.get_balance(
            (material or self.material).id, (warehouse or self.raw_store).id
        )

    def send_to_cleaning(self, quantity, destination=None, status=None):
        result = CleaningJobService.create_cleaning_job(
            raw_material_id=self.material.id,
            from_warehouse_id=self.raw_store.id,
            to_warehouse_id=(destination or self.clean_store).id,
            quantity=quantity,
            status=status,
        )
        return result["cleaningJob"]["jobNumber"]

    def complete_cleaning(self, job_number, leftover=None):
        return CleaningJobService.update_cleaning_job(
            job_number, status="Cleaned", leftover_quantity=leftover, reason_code="DUST"
        )["cleaningJob"]

    def start_processing(self, quantity, warehouse=None):
        result = ProcessingJobService.create_processing_job(
            input_raw_material_id=self.material.id,
            source_warehouse_id=(warehouse or self.clean_store).id,
            quantity_input=quantity,
        )
        return result["processingJob"]["jobNumber"]

    def cleaned_row(self, warehouse=None):
        rows = CleaningJobService.get_cleaned_materials(
            raw_material_id=self.material.id,
            warehouse_id=(warehouse or self.clean_store).id,
        )["cleanedMaterials"]
        return rows[0] if rows else None
