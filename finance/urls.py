"""
Finance App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import CourierTransactionViewSet, CourierViewSet, FinancialsViewSet, PayoutViewSet

router = DefaultRouter()
router.register(r'couriers', CourierViewSet, basename='courier')
router.register(r'payouts', PayoutViewSet, basename='payout')
router.register(r'courier-transactions', CourierTransactionViewSet, basename='courier-transaction')
router.register(r'financials', FinancialsViewSet, basename='financials')

urlpatterns = [
    path('', include(router.urls)),
]
