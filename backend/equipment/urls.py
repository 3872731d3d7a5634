from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import EquipmentViewSet, TransferRequestViewSet

router = DefaultRouter()
router.register(r'items', EquipmentViewSet, basename='equipment')
router.register(r'transfers', TransferRequestViewSet, basename='transfer-request')

urlpatterns = [
    path('', include(router.urls)),
]
