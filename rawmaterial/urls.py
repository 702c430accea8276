from django.urls import path
from . import views

app_name = "rawmaterial"

urlpatterns = [
    path("warehouse", views.WarehouseListView.as_view(), name="warehouse-list"),
    path("warehouse/<int:warehouse_id>", views.WarehouseDetailView.as_view(), name="warehouse-detail"),

    path("vendor", views.VendorListView.as_view(), name="vendor-list"),
    path("vendor/<int:vendor_id>", views.VendorDetailView.as_view(), name="vendor-detail"),
    path("vendor/<int:vendor_id>/status", views.VendorStatusView.as_view(), name="vendor-status"),

    path("product", views.ProductListView.as_view(), name="product-list"),
    path("product/<int:product_id>", views.ProductDetailView.as_view(), name="product-detail"),

    path("purchase", views.PurchaseOrderListView.as_view(), name="purchase-list"),
    path("purchase/item/<int:item_id>", views.PurchaseOrderItemView.as_view(), name="purchase-item"),
    path("purchase/<int:po_id>", views.PurchaseOrderDetailView.as_view(), name="purchase-detail"),

    path("stock", views.StockEntryListView.as_view(), name="stock-list"),
    path("stock/current", views.CurrentStockView.as_view(), name="stock-current"),
    path("stock/reconcile", views.StockReconcileView.as_view(), name="stock-reconcile"),
    path("stock/<int:entry_id>", views.StockEntryDetailView.as_view(), name="stock-detail"),

    path("cleaning", views.CleaningJobListView.as_view(), name="cleaning-list"),
    path("cleaning/<str:job_number>", views.CleaningJobDetailView.as_view(), name="cleaning-detail"),
    path("cleaned-materials", views.CleanedMaterialsView.as_view(), name="cleaned-materials"),

    path("processing", views.ProcessingJobListView.as_view(), name="processing-list"),
    path("processing/<str:job_number>", views.ProcessingJobDetailView.as_view(), name="processing-detail"),

    path("unfinished", views.UnfinishedStockListView.as_view(), name="unfinished-list"),
    path("unfinished/<int:unfinished_id>", views.UnfinishedStockDetailView.as_view(), name="unfinished-detail"),

    path("dashboard/conservation", views.ConservationView.as_view(), name="dashboard-conservation"),
    path("dashboard/<slug:section>", views.DashboardView.as_view(), name="dashboard"),

    path("timeline/purchase-orders", views.MaterialPurchaseOrdersView.as_view(), name="timeline-purchase-orders"),
    path("timeline/purchase-orders/<int:po_id>", views.PurchaseOrderTimelineView.as_view(), name="timeline-purchase-order"),

    path("quality", views.QualityReportListView.as_view(), name="quality-list"),
    path("quality/<int:report_id>", views.QualityReportDetailView.as_view(), name="quality-detail"),

    path("logs", views.TransactionLogListView.as_view(), name="log-list"),
]
