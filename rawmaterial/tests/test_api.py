from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.test import APITestCase

from rawmaterial.models import StockEntry, TransactionLog
from rawmaterial.tests.base import LedgerFixtureMixin


class RawApiTestCase(LedgerFixtureMixin, APITestCase):

    def setUp(self):
        super().setUp()
        self.user = get_user_model().objects.create_user(username="storekeeper", password="pass1234")
        self.client.force_authenticate(user=self.user)

    def post(self, url, data):
        return self.client.post(url, data, format="json")

    def put(self, url, data):
        return self.client.put(url, data, format="json")


class AuthenticationTests(RawApiTestCase):

    def test_anonymous_requests_are_rejected(self):
        self.client.force_authenticate(user=None)

        response = self.client.get("/raw/warehouse")

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_bearer_token(self):
        token = Token.objects.create(user=self.user)
        self.client.force_authenticate(user=None)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token.key}")

        response = self.client.get("/raw/warehouse")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 3)


class LedgerFlowApiTests(RawApiTestCase):

    def test_receive_clean_process(self):
        response = self.post("/raw/purchase", {
            "vendorId": self.vendor.id,
            "orderDate": "2025-01-10",
            "expectedDate": "2025-01-20",
            "items": [{"rawMaterialId": self.material.id, "quantityOrdered": 100, "rate": 3}],
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        item_id = response.data["purchaseOrder"]["items"][0]["id"]

        response = self.put(f"/raw/purchase/item/{item_id}", {
            "quantityReceived": 100, "status": "Received",
            "warehouseId": self.raw_store.id, "batchNumber": "B-17",
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["purchaseOrderStatus"], "Received")
        self.assertEqual(response.data["stockEntry"]["batchNumber"], "B-17")

        response = self.post("/raw/cleaning", {
            "rawMaterialId": self.material.id,
            "fromWarehouseId": self.raw_store.id,
            "toWarehouseId": self.clean_store.id,
            "quantity": 100,
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        job_number = response.data["cleaningJob"]["jobNumber"]
        self.assertEqual(self.balance(), Decimal("0"))

        response = self.put(f"/raw/cleaning/{job_number}", {
            "status": "Cleaned", "leftoverQuantity": 5, "reasonCode": "DUST",
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(Decimal(response.data["cleaningJob"]["netQuantity"]), Decimal("95"))

        response = self.client.get("/raw/cleaned-materials", {"warehouseId": self.clean_store.id})
        self.assertEqual(Decimal(response.data["cleanedMaterials"][0]["netQuantity"]), Decimal("95"))

        response = self.post("/raw/processing", {
            "inputRawMaterialId": self.material.id,
            "sourceWarehouseId": self.clean_store.id,
            "quantityInput": 95,
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        processing = response.data["processingJob"]["jobNumber"]

        response = self.put(f"/raw/processing/{processing}", {
            "status": "Finished",
            "byProducts": [{"skuCode": "BRAN", "quantity": 10, "warehouseId": self.mill.id, "tag": "feed"}],
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(Decimal(response.data["processingJob"]["finishedGood"]["quantity"]), Decimal("85"))
        self.assertEqual(response.data["processingJob"]["byProducts"][0]["tag"], "feed")

        response = self.client.get("/raw/stock/reconcile")
        self.assertTrue(response.data["consistent"])

        log = TransactionLog.objects.filter(entity="CleaningJob").first()
        self.assertEqual(log.user_id, self.user.id)

    def test_conservation_violation_is_409(self):
        self.receive(50)

        response = self.post("/raw/cleaning", {
            "rawMaterialId": self.material.id,
            "fromWarehouseId": self.raw_store.id,
            "toWarehouseId": self.clean_store.id,
            "quantity": 80,
        })

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(response.data["success"])
        self.assertEqual(response.data["code"], "CONSERVATION_VIOLATION")
        self.assertEqual(Decimal(response.data["details"]["available"]), Decimal("50"))

    def test_missing_quantity_is_400(self):
        response = self.post("/raw/cleaning", {
            "rawMaterialId": self.material.id,
            "fromWarehouseId": self.raw_store.id,
            "toWarehouseId": self.clean_store.id,
        })

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "INVALID_REQUEST")
        self.assertEqual(response.data["details"]["field"], "quantity")

    def test_unknown_job_is_404(self):
        response = self.client.get("/raw/cleaning/CJ99999")

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "NOT_FOUND")

        response = self.put("/raw/processing/PJ99999", {"status": "Finished"})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_bad_query_parameter_is_400(self):
        response = self.client.get("/raw/stock", {"page": "first"})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_body_must_be_an_object(self):
        response = self.post("/raw/warehouse", ["Raw Store"])

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class ResourceApiTests(RawApiTestCase):

    def test_warehouse_crud(self):
        response = self.post("/raw/warehouse", {"name": "Cold Room", "location": "Basement"})
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        warehouse_id = response.data["warehouse"]["id"]

        response = self.put(f"/raw/warehouse/{warehouse_id}", {"location": "Level -1"})
        self.assertEqual(response.data["warehouse"]["location"], "Level -1")

        response = self.client.delete(f"/raw/warehouse/{warehouse_id}")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get(f"/raw/warehouse/{warehouse_id}")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_referenced_warehouse_delete_is_400(self):
        self.receive(10)

        response = self.client.delete(f"/raw/warehouse/{self.raw_store.id}")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_vendor_bank_details_and_status(self):
        response = self.post("/raw/vendor", {
            "name": "Grain Co",
            "contactPerson": "A. Rao",
            "bankDetails": {"bankName": "First Bank", "ifscCode": "FB0001"},
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        vendor = response.data["vendor"]
        self.assertEqual(vendor["contactPerson"], "A. Rao")
        self.assertEqual(vendor["bankDetails"]["ifscCode"], "FB0001")

        response = self.client.patch(f"/raw/vendor/{vendor['id']}/status", {"enabled": False}, format="json")
        self.assertFalse(response.data["vendor"]["enabled"])

        response = self.post("/raw/purchase", {
            "vendorId": vendor["id"],
            "items": [{"rawMaterialId": self.material.id, "quantityOrdered": 5}],
        })
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_product_crud(self):
        response = self.post("/raw/product", {
            "skuCode": "RM-OATS", "name": "Oats", "unitOfMeasurement": "kg", "minReorderLevel": 10,
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        product_id = response.data["product"]["id"]

        response = self.put(f"/raw/product/{product_id}", {"category": "Grain"})
        self.assertEqual(response.data["product"]["category"], "Grain")

        response = self.client.get("/raw/product", {"category": "grain"})
        self.assertEqual(response.data["pagination"]["totalItems"], 2)

    def test_manual_stock_entry_and_distribution(self):
        response = self.post("/raw/stock", {
            "rawMaterialId": self.material.id,
            "warehouseId": self.mill.id,
            "quantity": 12,
            "entryType": "IN",
            "reasonCode": "OPENING",
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        entry_id = response.data["stockEntry"]["id"]

        response = self.put(f"/raw/stock/{entry_id}", {"batchNumber": "OPEN-1"})
        self.assertEqual(response.data["stockEntry"]["batchNumber"], "OPEN-1")

        response = self.client.get("/raw/stock/current", {"rawMaterialId": self.material.id})
        self.assertEqual(Decimal(response.data["totalQuantity"]), Decimal("12"))
        self.assertEqual(StockEntry.objects.count(), 1)

    def test_unfinished_stock_endpoints(self):
        self.receive(100)
        job_number = self.send_to_cleaning(100)
        self.complete_cleaning(job_number)

        response = self.post("/raw/unfinished", {
            "cleaningJobId": job_number, "quantity": 2, "reasonCode": "SPILL",
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        unfinished_id = response.data["unfinishedStock"]["id"]

        response = self.put(f"/raw/unfinished/{unfinished_id}", {"quantity": 3})
        self.assertEqual(Decimal(response.data["unfinishedStock"]["quantity"]), Decimal("3"))

        response = self.client.get("/raw/unfinished")
        self.assertEqual(response.data["pagination"]["totalItems"], 1)

    def test_dashboard_sections(self):
        self.receive(40)

        for section in ("total-stock", "pending-pos", "under-cleaning", "in-processing",
                        "low-stock", "waste-stock", "summary"):
            response = self.client.get(f"/raw/dashboard/{section}")
            self.assertEqual(response.status_code, status.HTTP_200_OK, section)

        response = self.client.get("/raw/dashboard/low-stock")
        self.assertEqual(response.data["count"], 1)

        response = self.client.get("/raw/dashboard/unknown")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_conservation_requires_material(self):
        response = self.client.get("/raw/dashboard/conservation")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.get("/raw/dashboard/conservation", {"rawMaterialId": self.material.id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["balanceMatchesLedger"])

    def test_timeline_endpoints(self):
        self.receive(10)

        response = self.client.get("/raw/timeline/purchase-orders", {"rawMaterialId": self.material.id})
        self.assertEqual(response.data["count"], 1)
        po_id = response.data["purchaseOrders"][0]["id"]

        response = self.client.get(f"/raw/timeline/purchase-orders/{po_id}")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["events"][0]["type"], "ORDER_PLACED")

        response = self.client.get("/raw/timeline/purchase-orders")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_quality_and_logs(self):
        response = self.post("/raw/quality", {
            "rawMaterialName": "Wheat", "grn": "GRN-1",
            "parameters": [{"parameter": "Moisture", "standard": "<12%", "result": "11%"}],
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        report_id = response.data["report"]["id"]

        response = self.put(f"/raw/quality/{report_id}", {"variety": "Durum"})
        self.assertEqual(response.data["report"]["variety"], "Durum")
        self.assertEqual(len(response.data["report"]["parameters"]), 1)

        response = self.client.delete(f"/raw/quality/{report_id}")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get("/raw/logs", {"entity": "RMQualityReport"})
        self.assertEqual(response.data["pagination"]["totalItems"], 3)

    def test_schema_is_served(self):
        response = self.client.get("/api/schema/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
