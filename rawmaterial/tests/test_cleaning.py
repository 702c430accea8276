from decimal import Decimal

from django.test import TestCase

from rawmaterial.models import CleaningJob, StockEntry, UnfinishedStock
from rawmaterial.services import (
    CleaningJobService, CurrentStockService, UnfinishedStockService,
    InvalidRequestError, NotFoundError, ConservationViolationError,
    InsufficientStockError,
)
from rawmaterial.tests.base import LedgerFixtureMixin


class CleaningJobServiceTests(LedgerFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.receive(100)

    def entries(self, job_number):
        return StockEntry.objects.filter(
            reference_type=StockEntry.ReferenceType.CLEANING_JOB, reference_id=job_number
        )

    def test_creation_reserves_source_stock(self):
        job_number = self.send_to_cleaning(100)

        self.assertEqual(job_number, "CJ00001")
        self.assertEqual(self.balance(), Decimal("0"))
        reservation = self.entries(job_number).get()
        self.assertEqual(reservation.entry_type, StockEntry.EntryType.RESERVED)
        self.assertEqual(reservation.warehouse_id, self.raw_store.id)
        self.assertEqual(reservation.quantity, Decimal("100"))

    def test_insufficient_stock_creates_nothing(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            self.send_to_cleaning(150)

        self.assertEqual(Decimal(ctx.exception.details["available"]), Decimal("100"))
        self.assertEqual(self.balance(), Decimal("100"))
        self.assertFalse(CleaningJob.objects.exists())

    def test_insufficient_stock_is_a_conservation_violation(self):
        with self.assertRaises(ConservationViolationError):
            self.send_to_cleaning(101)

    def test_completion_keeps_log_append_only(self):
        job_number = self.send_to_cleaning(100)
        self.complete_cleaning(job_number)

        self.assertEqual(self.balance(), Decimal("0"))
        types = list(self.entries(job_number).order_by("id").values_list("entry_type", flat=True))
        self.assertEqual(types, [
            StockEntry.EntryType.RESERVED,
            StockEntry.EntryType.RELEASED,
            StockEntry.EntryType.OUT,
        ])
        reservation = self.entries(job_number).get(entry_type=StockEntry.EntryType.RESERVED)
        self.assertEqual(reservation.status, "Consumed")

        reconcile = CurrentStockService.reconcile()
        self.assertTrue(reconcile["consistent"])

    def test_leftover_is_recorded_as_waste(self):
        job_number = self.send_to_cleaning(100)
        job = self.complete_cleaning(job_number, leftover=5)

        self.assertEqual(Decimal(job["wastageQuantity"]), Decimal("5"))
        self.assertEqual(Decimal(job["netQuantity"]), Decimal("95"))
        self.assertEqual(len(job["unfinishedStocks"]), 1)

        waste = UnfinishedStock.objects.get()
        self.assertEqual(waste.quantity, Decimal("5"))
        self.assertEqual(waste.warehouse_id, self.clean_store.id)
        self.assertEqual(waste.reason_code, "DUST")
        self.assertTrue(waste.sku_code.startswith(f"{self.material.id}-UNF-"))

        row = self.cleaned_row()
        self.assertEqual(Decimal(row["netQuantity"]), Decimal("95"))
        self.assertEqual(Decimal(row["availableQuantity"]), Decimal("95"))
        self.assertEqual(row["jobCount"], 1)

    def test_net_yield_follows_recorded_waste(self):
        job_number = self.send_to_cleaning(60)
        self.complete_cleaning(job_number, leftover=4)
        job = CleaningJob.objects.get(job_number=job_number)

        self.assertEqual(CleaningJobService.net_yield(job), Decimal("56"))

        UnfinishedStockService.create(quantity=6, cleaning_job_id=job_number)
        self.assertEqual(CleaningJobService.net_yield(job), Decimal("50"))

        listed = CleaningJobService.list()["cleaningJobs"][0]
        self.assertEqual(Decimal(listed["netQuantity"]), Decimal("50"))

    def test_waste_above_job_quantity_rolls_back(self):
        job_number = self.send_to_cleaning(100)

        with self.assertRaises(ConservationViolationError):
            self.complete_cleaning(job_number, leftover=120)

        job = CleaningJob.objects.get(job_number=job_number)
        self.assertEqual(job.status, CleaningJob.Status.SENT)
        self.assertFalse(UnfinishedStock.objects.exists())
        self.assertEqual(self.entries(job_number).count(), 1)

    def test_leftover_requires_completed_status(self):
        job_number = self.send_to_cleaning(100)

        with self.assertRaises(InvalidRequestError):
            CleaningJobService.update_cleaning_job(
                job_number, status="In-Progress", leftover_quantity=5
            )

    def test_cancellation_releases_reserved_stock(self):
        job_number = self.send_to_cleaning(60)
        self.assertEqual(self.balance(), Decimal("40"))

        result = CleaningJobService.update_cleaning_job(job_number, status="Cancelled")

        self.assertEqual(result["cleaningJob"]["status"], CleaningJob.Status.CANCELLED)
        self.assertEqual(self.balance(), Decimal("100"))
        released = self.entries(job_number).get(entry_type=StockEntry.EntryType.RELEASED)
        self.assertEqual(released.quantity, Decimal("60"))
        self.assertIsNone(self.cleaned_row())
        self.assertTrue(CurrentStockService.reconcile()["consistent"])

    def test_cancelled_job_is_frozen(self):
        job_number = self.send_to_cleaning(60)
        CleaningJobService.update_cleaning_job(job_number, status="Cancelled")

        with self.assertRaises(InvalidRequestError):
            CleaningJobService.update_cleaning_job(job_number, status="Sent")

    def test_completed_job_cannot_reopen(self):
        job_number = self.send_to_cleaning(60)
        self.complete_cleaning(job_number)

        with self.assertRaises(InvalidRequestError):
            CleaningJobService.update_cleaning_job(job_number, status="Sent")

        result = CleaningJobService.update_cleaning_job(job_number, status="Finished")
        self.assertEqual(result["cleaningJob"]["status"], CleaningJob.Status.FINISHED)
        self.assertEqual(self.balance(), Decimal("40"))

    def test_quantity_change_adjusts_reservation(self):
        job_number = self.send_to_cleaning(60)

        CleaningJobService.update_cleaning_job(job_number, quantity=80)
        self.assertEqual(self.balance(), Decimal("20"))

        CleaningJobService.update_cleaning_job(job_number, quantity=50)
        self.assertEqual(self.balance(), Decimal("50"))

        self.assertTrue(CurrentStockService.reconcile()["consistent"])

    def test_quantity_increase_beyond_stock_is_rejected(self):
        job_number = self.send_to_cleaning(60)

        with self.assertRaises(InsufficientStockError):
            CleaningJobService.update_cleaning_job(job_number, quantity=120)

        self.assertEqual(CleaningJob.objects.get(job_number=job_number).quantity, Decimal("60"))

    def test_job_created_as_cleaned_is_completed_at_once(self):
        job_number = self.send_to_cleaning(100, status="Cleaned")

        types = set(self.entries(job_number).values_list("entry_type", flat=True))
        self.assertEqual(types, {
            StockEntry.EntryType.RESERVED,
            StockEntry.EntryType.RELEASED,
            StockEntry.EntryType.OUT,
        })
        self.assertEqual(Decimal(self.cleaned_row()["availableQuantity"]), Decimal("100"))

    def test_new_job_cannot_start_cancelled(self):
        with self.assertRaises(InvalidRequestError):
            self.send_to_cleaning(10, status="Cancelled")

    def test_lookup_by_number_or_id(self):
        job_number = self.send_to_cleaning(10)
        job = CleaningJob.objects.get(job_number=job_number)

        by_id = CleaningJobService.get(job.id)["cleaningJob"]
        self.assertEqual(by_id["jobNumber"], job_number)
        self.assertTrue(by_id["logs"])

        with self.assertRaises(NotFoundError):
            CleaningJobService.get("CJ99999")

    def test_cleaned_pool_is_scoped_per_warehouse(self):
        first = self.send_to_cleaning(40, destination=self.clean_store)
        second = self.send_to_cleaning(30, destination=self.mill)
        self.complete_cleaning(first)
        self.complete_cleaning(second)

        self.assertEqual(Decimal(self.cleaned_row(self.clean_store)["netQuantity"]), Decimal("40"))
        self.assertEqual(Decimal(self.cleaned_row(self.mill)["netQuantity"]), Decimal("30"))
        self.assertEqual(CleaningJobService.get_cleaned_materials()["count"], 2)


class UnfinishedStockServiceTests(LedgerFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.receive(100)
        self.job_number = self.send_to_cleaning(100)

    def test_exactly_one_job_is_required(self):
        job = CleaningJob.objects.get(job_number=self.job_number)

        with self.assertRaises(InvalidRequestError):
            UnfinishedStockService.create(quantity=1)

        with self.assertRaises(InvalidRequestError):
            UnfinishedStockService.create(quantity=1, cleaning_job_id=job.id, processing_job_id=1)

    def test_waste_needs_completed_cleaning(self):
        with self.assertRaises(InvalidRequestError):
            UnfinishedStockService.create(quantity=3, cleaning_job_id=self.job_number)

    def test_create_and_update_against_cleaning_job(self):
        self.complete_cleaning(self.job_number)

        created = UnfinishedStockService.create(
            quantity=3, reason_code="STONES", cleaning_job_id=self.job_number
        )["unfinishedStock"]
        self.assertEqual(created["cleaningJobNumber"], self.job_number)
        self.assertEqual(created["warehouseId"], self.clean_store.id)

        updated = UnfinishedStockService.update(created["id"], quantity=8)["unfinishedStock"]
        self.assertEqual(Decimal(updated["quantity"]), Decimal("8"))
        self.assertEqual(Decimal(self.cleaned_row()["netQuantity"]), Decimal("92"))

        with self.assertRaises(ConservationViolationError):
            UnfinishedStockService.update(created["id"], quantity=101)

    def test_list_filters_by_job(self):
        self.complete_cleaning(self.job_number, leftover=2)
        job = CleaningJob.objects.get(job_number=self.job_number)

        result = UnfinishedStockService.list(cleaning_job_id=job.id)
        self.assertEqual(result["pagination"]["totalItems"], 1)
        self.assertEqual(UnfinishedStockService.list(processing_job_id=999)["unfinishedStocks"], [])
