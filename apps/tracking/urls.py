from django.urls import path
from .views import (
    PartnerEtaView,
    PartnerLocationView,
    ReportLocationView,
    StartTrackingView,
    StopTrackingView,
)

urlpatterns = [
    path('start/', StartTrackingView.as_view(), name='tracking-start'),
    path('stop/', StopTrackingView.as_view(), name='tracking-stop'),
    path('location/', ReportLocationView.as_view(), name='tracking-report'),
    path('partners/<uuid:partner_id>/location/', PartnerLocationView.as_view(), name='tracking-partner-location'),
    path('partners/<uuid:partner_id>/eta/', PartnerEtaView.as_view(), name='tracking-partner-eta'),
]
