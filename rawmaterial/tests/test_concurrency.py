import threading
from decimal import Decimal
from unittest import mock

from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature

from rawmaterial.models import CleaningJob, CurrentStock, StockEntry
from rawmaterial.services import (
    CleaningJobService, CurrentStockService, StockEntryService,
    InsufficientStockError, TransactionFailedError,
)
from rawmaterial.tests.base import LedgerFixtureMixin


class LedgerRollbackTests(LedgerFixtureMixin, TestCase):

    def test_failed_ledger_write_rolls_back_reservation_and_job(self):
        self.receive(100)
        entries_before = StockEntry.objects.count()

        with mock.patch.object(
            StockEntryService, "record_entry", side_effect=DatabaseError("disk I/O error")
        ):
            with self.assertRaises(TransactionFailedError) as ctx:
                CleaningJobService.create_cleaning_job(
                    raw_material_id=self.material.id,
                    from_warehouse_id=self.raw_store.id,
                    to_warehouse_id=self.clean_store.id,
                    quantity=40,
                )

        self.assertEqual(ctx.exception.code, "TRANSACTION_FAILED")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(self.balance(), Decimal("100"))
        self.assertFalse(CleaningJob.objects.exists())
        self.assertEqual(StockEntry.objects.count(), entries_before)

        # The same request goes through once the database recovers.
        self.send_to_cleaning(40)
        self.assertEqual(self.balance(), Decimal("60"))

    def test_decrement_checks_the_stored_balance_not_a_stale_read(self):
        self.receive(100)
        stale = self.balance()

        CurrentStockService.decrement(self.material.id, self.raw_store.id, 60)
        with self.assertRaises(InsufficientStockError):
            CurrentStockService.decrement(self.material.id, self.raw_store.id, 60)

        self.assertEqual(stale, Decimal("100"))
        self.assertEqual(self.balance(), Decimal("40"))


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentStockTests(LedgerFixtureMixin, TransactionTestCase):
    """Parallel writers on one (material, warehouse) key. Needs a row-locking backend."""

    workers = 20

    def run_in_parallel(self, target):
        barrier = threading.Barrier(self.workers)
        errors = []

        def worker():
            try:
                barrier.wait()
                target()
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(self.workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return errors

    def test_parallel_increments_on_a_new_key(self):
        errors = self.run_in_parallel(
            lambda: CurrentStockService.increment(self.material.id, self.raw_store.id, 5)
        )

        self.assertEqual(errors, [])
        self.assertEqual(self.balance(), Decimal("100"))
        self.assertEqual(
            CurrentStock.objects.filter(raw_material=self.material, warehouse=self.raw_store).count(), 1
        )

    def test_parallel_decrements_never_overdraw(self):
        CurrentStockService.increment(self.material.id, self.raw_store.id, 50)

        errors = self.run_in_parallel(
            lambda: CurrentStockService.decrement(self.material.id, self.raw_store.id, 5)
        )

        self.assertEqual(len(errors), 10)
        self.assertTrue(all(isinstance(e, InsufficientStockError) for e in errors))
        self.assertEqual(self.balance(), Decimal("0"))

    def test_parallel_cleaning_jobs_reserve_at_most_the_balance(self):
        self.receive(100)

        errors = self.run_in_parallel(lambda: self.send_to_cleaning(10))

        self.assertEqual(len(errors), 10)
        self.assertEqual(CleaningJob.objects.count(), 10)
        self.assertEqual(self.balance(), Decimal("0"))
        self.assertEqual(
            StockEntry.objects.filter(entry_type=StockEntry.EntryType.RESERVED).count(), 10
        )
