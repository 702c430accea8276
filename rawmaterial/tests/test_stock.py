from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.test import TestCase, override_settings

from rawmaterial.models import CurrentStock, StockEntry
from rawmaterial.services import (
    StockEntryService, CurrentStockService, CleaningJobService,
    InvalidRequestError, InsufficientStockError,
)
from rawmaterial.tests.base import LedgerFixtureMixin


class StockEntryServiceTests(LedgerFixtureMixin, TestCase):

    def post(self, quantity, entry_type, warehouse=None):
        return StockEntryService.post_entry(
            raw_material_id=self.material.id,
            warehouse_id=(warehouse or self.raw_store).id,
            quantity=quantity,
            entry_type=entry_type,
            reason_code="COUNT",
        )

    def test_manual_entries_move_the_balance(self):
        result = self.post(30, "IN")
        self.assertEqual(Decimal(result["currentQuantity"]), Decimal("30"))

        result = self.post(12, "OUT")
        self.assertEqual(Decimal(result["currentQuantity"]), Decimal("18"))
        self.assertEqual(result["stockEntry"]["referenceType"], StockEntry.ReferenceType.MANUAL)

    def test_outbound_beyond_balance_is_rejected(self):
        self.post(10, "IN")

        with self.assertRaises(InsufficientStockError):
            self.post(11, "OUT")

        self.assertEqual(self.balance(), Decimal("10"))
        self.assertEqual(StockEntry.objects.count(), 1)

    @override_settings(ALLOW_NEGATIVE_STOCK=True)
    def test_negative_stock_when_allowed(self):
        result = self.post(5, "OUT")

        self.assertEqual(Decimal(result["currentQuantity"]), Decimal("-5"))
        self.assertTrue(CurrentStockService.reconcile()["consistent"])

    def test_invalid_entry_type(self):
        with self.assertRaises(InvalidRequestError):
            self.post(5, "LOST")

    def test_quantity_must_be_positive(self):
        for value in (0, -3, "abc", None):
            with self.assertRaises(InvalidRequestError):
                self.post(value, "IN")

    def test_list_filters(self):
        self.receive(100)
        self.post(5, "IN", warehouse=self.mill)

        result = StockEntryService.list(warehouse_id=self.mill.id)
        self.assertEqual(result["pagination"]["totalItems"], 1)

        result = StockEntryService.list(entry_type="IN", raw_material_id=self.material.id)
        self.assertEqual(result["pagination"]["totalItems"], 2)

    def test_quantity_correction_shows_as_drift(self):
        self.post(30, "IN")
        entry = StockEntry.objects.get()

        StockEntryService.update_stock_entry(entry.id, quantity=25, status="Corrected")

        report = CurrentStockService.reconcile()
        self.assertFalse(report["consistent"])
        self.assertEqual(Decimal(report["drift"][0]["difference"]), Decimal("-5"))

        CurrentStockService.reconcile(repair=True)
        self.assertEqual(self.balance(), Decimal("25"))
        self.assertTrue(CurrentStockService.reconcile()["consistent"])


class CurrentStockServiceTests(LedgerFixtureMixin, TestCase):

    def test_balances_are_per_warehouse(self):
        self.receive(100)
        self.receive(20, warehouse=self.mill)

        result = CurrentStockService.list_balances(raw_material_id=self.material.id)

        self.assertEqual(result["count"], 2)
        self.assertEqual(Decimal(result["totalQuantity"]), Decimal("120"))
        self.assertEqual(self.balance(self.mill), Decimal("20"))

    def test_zero_balances_can_be_hidden(self):
        self.receive(10)
        self.send_to_cleaning(10)

        self.assertEqual(CurrentStockService.list_balances()["count"], 1)
        self.assertEqual(CurrentStockService.list_balances(include_empty=False)["count"], 0)

    def test_unknown_pair_has_zero_balance(self):
        self.assertEqual(self.balance(self.mill), Decimal("0"))

    def test_replay_matches_cache_after_full_flow(self):
        self.receive(100)
        job_number = self.send_to_cleaning(70)
        self.complete_cleaning(job_number, leftover=5)
        cancelled = self.send_to_cleaning(20)
        CleaningJobService.update_cleaning_job(cancelled, status="Cancelled")

        self.assertEqual(self.balance(), Decimal("30"))
        self.assertEqual(
            StockEntryService.replay_balance(self.material.id, self.raw_store.id), Decimal("30")
        )
        self.assertTrue(CurrentStockService.reconcile()["consistent"])


class ReconcileCommandTests(LedgerFixtureMixin, TestCase):

    def test_reports_consistent_ledger(self):
        self.receive(100)
        out = StringIO()

        call_command("reconcile_stock", stdout=out)

        self.assertIn("matches the ledger", out.getvalue())

    def test_repairs_drift(self):
        self.receive(100)
        CurrentStock.objects.filter(raw_material=self.material).update(current_quantity=70)
        out = StringIO()

        call_command("reconcile_stock", "--repair", stdout=out)

        self.assertIn("Repaired 1 balances", out.getvalue())
        self.assertEqual(self.balance(), Decimal("100"))
