from django.urls import path
from .views import CollectCashView, LedgerSummaryView, PlatformSettlementView, SubmitCashView

urlpatterns = [
    path('collect/', CollectCashView.as_view(), name='cod-collect'),
    path('submit/', SubmitCashView.as_view(), name='cod-submit'),
    path('summary/', LedgerSummaryView.as_view(), name='cod-summary'),
    path('platform/settlements/', PlatformSettlementView.as_view(), name='cod-platform-settlement'),
]
