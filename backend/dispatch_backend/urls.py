from django.urls import path, include
from rest_framework.routers import DefaultRouter
from backend.assignments.views import (
    AnalyticsView,
    ManualQueueView,
    OfferViewSet,
    OrderDispatchViewSet,
    RiderViewSet,
)

router = DefaultRouter()
router.register(r'orders', OrderDispatchViewSet, basename='order')
router.register(r'offers', OfferViewSet, basename='offer')
router.register(r'riders', RiderViewSet, basename='rider')

urlpatterns = [
    path('api/v1/', include(router.urls)),
    path('api/v1/manual-queue/', ManualQueueView.as_view(), name='manual-queue'),
    path('api/v1/assignment-analytics/', AnalyticsView.as_view(), name='assignment-analytics'),
]
