from django.urls import path
from .views import MyEarningsView, PartnerEarningsView

urlpatterns = [
    path('me/', MyEarningsView.as_view(), name='earnings-me'),
    path('partners/<uuid:partner_id>/', PartnerEarningsView.as_view(), name='earnings-partner'),
]
