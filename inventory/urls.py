from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import (
    CategoryViewSet, SupplierViewSet, WarehouseViewSet, ProductViewSet,
    InventoryViewSet, StockMovementViewSet, ProductSerialViewSet, StockTransactionViewSet,
)
from .transfer_views import TransferViewSet
from .stocktake_views import StocktakeViewSet

router = DefaultRouter()
router.register(r'categories', CategoryViewSet, basename='categories')
router.register(r'suppliers', SupplierViewSet, basename='suppliers')
router.register(r'warehouses', WarehouseViewSet, basename='warehouses')
router.register(r'products', ProductViewSet, basename='products')
router.register(r'inventory', InventoryViewSet, basename='inventory')
router.register(r'stock-movements', StockMovementViewSet, basename='stock-movements')
router.register(r'serials', ProductSerialViewSet, basename='serials')
# Import (PN-) and export (PX-) documents
router.register(r'stock-transactions', StockTransactionViewSet, basename='stock-transactions')
router.register(r'transfers', TransferViewSet, basename='transfers')
router.register(r'stocktakes', StocktakeViewSet, basename='stocktakes')

urlpatterns = [
    path('api/', include(router.urls)),
]
