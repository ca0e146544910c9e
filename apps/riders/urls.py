from django.urls import path
from .views import PartnerProfileView

urlpatterns = [
    path('me/', PartnerProfileView.as_view(), name='partner-profile'),
]
