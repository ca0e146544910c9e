from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import AssignPartnerView, DeliveryCreateView, DeliveryViewSet, RateDeliveryView

router = DefaultRouter()
router.register(r'jobs', DeliveryViewSet, basename='delivery-jobs')

urlpatterns = [
    path('', include(router.urls)),
    path('dispatch/', DeliveryCreateView.as_view(), name='delivery-create'),
    path('dispatch/<uuid:pk>/assign/', AssignPartnerView.as_view(), name='delivery-assign'),
    path('dispatch/<uuid:pk>/rate/', RateDeliveryView.as_view(), name='delivery-rate'),
]
