from decimal import Decimal

from django.test import TestCase

from rawmaterial.models import ByProduct, FinishedGood, ProcessingJob
from rawmaterial.services import (
    ProcessingJobService, UnfinishedStockService, CleaningJobService,
    InvalidRequestError, ConservationViolationError,
)
from rawmaterial.tests.base import LedgerFixtureMixin


class ProcessingJobServiceTests(LedgerFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.receive(100)
        self.cleaning_number = self.send_to_cleaning(100)
        self.complete_cleaning(self.cleaning_number, leftover=5)

    def by_product(self, quantity, sku="RM-WHEAT-BRAN", warehouse=None):
        return {
            "sku_code": sku,
            "quantity": quantity,
            "warehouse_id": (warehouse or self.mill).id,
            "tag": "feed",
        }

    def test_finished_good_is_input_minus_waste(self):
        job_number = self.start_processing(95)
        self.assertEqual(job_number, "PJ00001")
        self.assertEqual(Decimal(self.cleaned_row()["availableQuantity"]), Decimal("0"))

        job = ProcessingJobService.update_processing_job(
            job_number, status="Finished", by_products=[self.by_product(10)]
        )["processingJob"]

        self.assertEqual(job["status"], ProcessingJob.Status.FINISHED)
        self.assertIsNotNone(job["finishedAt"])
        self.assertEqual(Decimal(job["totalByProductQuantity"]), Decimal("10"))
        self.assertEqual(Decimal(job["finishedGood"]["quantity"]), Decimal("85"))
        self.assertEqual(job["finishedGood"]["skuCode"], "FG-RM-WHEAT")
        self.assertEqual(job["finishedGood"]["warehouseId"], self.mill.id)
        self.assertEqual(Decimal(job["outputQuantity"]), Decimal("85"))

    def test_processing_beyond_cleaned_pool_is_rejected(self):
        with self.assertRaises(ConservationViolationError):
            self.start_processing(96)

        self.assertFalse(ProcessingJob.objects.exists())

    def test_pool_is_per_warehouse(self):
        with self.assertRaises(ConservationViolationError):
            self.start_processing(10, warehouse=self.mill)

    def test_concurrent_jobs_share_the_pool(self):
        self.start_processing(60)

        with self.assertRaises(ConservationViolationError):
            self.start_processing(40)

        self.start_processing(35)
        self.assertEqual(Decimal(self.cleaned_row()["availableQuantity"]), Decimal("0"))

    def test_new_job_must_start_in_progress(self):
        with self.assertRaises(InvalidRequestError):
            ProcessingJobService.create_processing_job(
                input_raw_material_id=self.material.id,
                source_warehouse_id=self.clean_store.id,
                quantity_input=10,
                status="Finished",
            )

    def test_by_products_are_replaced_not_appended(self):
        job_number = self.start_processing(95)

        ProcessingJobService.update_processing_job(job_number, by_products=[self.by_product(10)])
        ProcessingJobService.update_processing_job(job_number, by_products=[
            self.by_product(4, sku="BRAN"),
            self.by_product(3, sku="HUSK"),
        ])

        job = ProcessingJob.objects.get(job_number=job_number)
        self.assertEqual(
            sorted(job.by_products.values_list("sku_code", flat=True)), ["BRAN", "HUSK"]
        )

        result = ProcessingJobService.update_processing_job(job_number, status="Completed")
        self.assertEqual(Decimal(result["processingJob"]["finishedGood"]["quantity"]), Decimal("88"))

    def test_by_products_cannot_exceed_input(self):
        job_number = self.start_processing(50)

        with self.assertRaises(ConservationViolationError):
            ProcessingJobService.update_processing_job(
                job_number, by_products=[self.by_product(30), self.by_product(25)]
            )

        self.assertFalse(ByProduct.objects.exists())

    def test_unfinished_waste_reduces_finished_good(self):
        job_number = self.start_processing(95)
        UnfinishedStockService.create(
            quantity=5, reason_code="BURNT", processing_job_id=job_number
        )

        job = ProcessingJobService.update_processing_job(
            job_number, status="Finished", by_products=[self.by_product(10)]
        )["processingJob"]

        self.assertEqual(Decimal(job["totalUnfinishedQuantity"]), Decimal("5"))
        self.assertEqual(Decimal(job["finishedGood"]["quantity"]), Decimal("80"))

    def test_finished_good_defaults_to_source_warehouse(self):
        job_number = self.start_processing(95)

        job = ProcessingJobService.update_processing_job(job_number, status="Finished")["processingJob"]
        self.assertEqual(Decimal(job["finishedGood"]["quantity"]), Decimal("95"))
        self.assertEqual(job["finishedGood"]["warehouseId"], self.clean_store.id)

        job = ProcessingJobService.update_processing_job(
            job_number, status="Completed", finished_good_warehouse_id=self.mill.id
        )["processingJob"]
        self.assertEqual(Decimal(job["finishedGood"]["quantity"]), Decimal("95"))
        self.assertEqual(job["finishedGood"]["warehouseId"], self.mill.id)
        self.assertEqual(FinishedGood.objects.count(), 1)

    def test_cancellation_returns_input_to_pool(self):
        job_number = self.start_processing(60)

        ProcessingJobService.update_processing_job(job_number, status="Cancelled")

        self.assertEqual(Decimal(self.cleaned_row()["availableQuantity"]), Decimal("95"))
        with self.assertRaises(InvalidRequestError):
            ProcessingJobService.update_processing_job(job_number, status="In-Progress")

    def test_completed_job_with_finished_good_cannot_cancel(self):
        job_number = self.start_processing(95)
        ProcessingJobService.update_processing_job(
            job_number, status="Finished", by_products=[self.by_product(10)]
        )

        with self.assertRaises(InvalidRequestError):
            ProcessingJobService.update_processing_job(job_number, status="Cancelled")

    def test_input_increase_checks_pool(self):
        job_number = self.start_processing(50)

        ProcessingJobService.update_processing_job(job_number, quantity_input=95)
        with self.assertRaises(ConservationViolationError):
            ProcessingJobService.update_processing_job(job_number, quantity_input=96)

    def test_waste_after_processing_is_limited_to_remaining_pool(self):
        self.start_processing(90)

        with self.assertRaises(ConservationViolationError):
            UnfinishedStockService.create(quantity=10, cleaning_job_id=self.cleaning_number)

        self.assertEqual(
            CleaningJobService.available_cleaned(self.material.id, self.clean_store.id), Decimal("5")
        )
