from django.test import TestCase

from rawmaterial.models import RMQualityParameter, TransactionLog
from rawmaterial.services import (
    RMQualityReportService, TransactionLogService, TimelineService,
    ProcessingJobService, CleaningJobService, InvalidRequestError, NotFoundError,
)
from rawmaterial.tests.base import LedgerFixtureMixin


class QualityReportServiceTests(TestCase):

    def create_report(self, **overrides):
        data = {
            "raw_material_name": "Wheat",
            "grn": "GRN-104",
            "variety": "Durum",
            "supplier": "Agro Supplies",
            "parameters": [
                {"parameter": "Moisture", "standard": "< 12%", "result": "11.2%"},
                {"parameter": "Foreign matter", "standard": "< 1%", "result": "0.4%"},
            ],
        }
        data.update(overrides)
        return RMQualityReportService.create(**data)["report"]

    def test_create_with_parameters(self):
        report = self.create_report()

        self.assertEqual(report["grn"], "GRN-104")
        self.assertEqual(len(report["parameters"]), 2)

    def test_grn_is_required(self):
        with self.assertRaises(InvalidRequestError):
            self.create_report(grn="")

    def test_parameter_name_is_required(self):
        with self.assertRaises(InvalidRequestError):
            self.create_report(parameters=[{"standard": "x"}])

    def test_update_replaces_parameters(self):
        report = self.create_report()

        updated = RMQualityReportService.update(
            report["id"], supplier="Grain Co",
            parameters=[{"parameter": "Protein", "standard": "> 11%", "result": "12%"}],
        )["report"]

        self.assertEqual(updated["supplier"], "Grain Co")
        self.assertEqual([p["parameter"] for p in updated["parameters"]], ["Protein"])
        self.assertEqual(RMQualityParameter.objects.count(), 1)

    def test_list_search_and_delete(self):
        report = self.create_report()
        self.create_report(grn="GRN-200", raw_material_name="Rice", variety="", supplier="")

        result = RMQualityReportService.list(search="durum")
        self.assertEqual(result["pagination"]["totalItems"], 1)
        self.assertEqual(result["reports"][0]["id"], report["id"])

        RMQualityReportService.delete(report["id"])
        with self.assertRaises(NotFoundError):
            RMQualityReportService.get(report["id"])


class TransactionLogServiceTests(LedgerFixtureMixin, TestCase):

    def test_mutations_are_logged(self):
        self.receive(100)
        job_number = self.send_to_cleaning(10)

        creates = TransactionLogService.list(type="CREATE")["logs"]
        entities = {log["entity"] for log in creates}
        self.assertIn("PurchaseOrder", entities)
        self.assertIn("CleaningJob", entities)

        updates = TransactionLogService.list(entity="PurchaseOrderItem")
        self.assertEqual(updates["pagination"]["totalItems"], 1)

        cleaning = TransactionLogService.list(entity="CleaningJob")["logs"][0]
        self.assertEqual(cleaning["entityId"], job_number)

    def test_unknown_type_is_rejected(self):
        with self.assertRaises(InvalidRequestError):
            TransactionLogService.list(type="PURGE")

    def test_user_filter(self):
        TransactionLogService.record(TransactionLog.Type.DELETE, "Warehouse", 9, "gone", user_id=7)

        result = TransactionLogService.list(user_id=7)
        self.assertEqual(result["pagination"]["totalItems"], 1)
        self.assertEqual(result["logs"][0]["userId"], 7)


class TimelineServiceTests(LedgerFixtureMixin, TestCase):

    def test_purchase_order_timeline(self):
        self.receive(100)
        job_number = self.send_to_cleaning(100)
        self.complete_cleaning(job_number, leftover=5)
        processing = self.start_processing(95)
        ProcessingJobService.update_processing_job(processing, status="Finished", by_products=[{
            "sku_code": "BRAN", "quantity": 10, "warehouse_id": self.mill.id,
        }])

        orders = TimelineService.purchase_orders_for_material(self.material.id)
        self.assertEqual(orders["count"], 1)
        po_id = orders["purchaseOrders"][0]["id"]

        timeline = TimelineService.purchase_order_timeline(po_id)
        types = [event["type"] for event in timeline["events"]]

        self.assertEqual(types[0], "ORDER_PLACED")
        for expected in ("RECEIVED", "CLEANING_STARTED", "CLEANED",
                         "PROCESSING_STARTED", "PROCESSED", "FINISHED_GOOD"):
            self.assertIn(expected, types)
        self.assertEqual(timeline["purchaseOrder"]["items"][0]["rawMaterial"]["id"], self.material.id)

    def test_cancelled_jobs_are_left_out(self):
        self.receive(100)
        job_number = self.send_to_cleaning(40)
        CleaningJobService.update_cleaning_job(job_number, status="Cancelled")

        po_id = TimelineService.purchase_orders_for_material(self.material.id)["purchaseOrders"][0]["id"]
        types = [event["type"] for event in TimelineService.purchase_order_timeline(po_id)["events"]]

        self.assertNotIn("CLEANING_STARTED", types)

    def test_unknown_order(self):
        with self.assertRaises(NotFoundError):
            TimelineService.purchase_order_timeline(999)
