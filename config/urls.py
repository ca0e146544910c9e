from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from drf_spectacular.views import SpectacularAPIView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

admin_url = settings.ADMIN_URL.strip("/") + "/"

urlpatterns = [
    path(admin_url, admin.site.urls),

    # Auth
    path('api/v1/auth/token/', TokenObtainPairView.as_view(), name='token-obtain'),
    path('api/v1/auth/token/refresh/', TokenRefreshView.as_view(), name='token-refresh'),

    # Core Apps
    path('api/v1/riders/', include('apps.riders.urls')),
    path('api/v1/delivery/', include('apps.delivery.urls')),
    path('api/v1/cod/', include('apps.cod.urls')),
    path('api/v1/tracking/', include('apps.tracking.urls')),
    path('api/v1/earnings/', include('apps.earnings.urls')),
    path('api/v1/utils/', include('apps.utils.urls')),

    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
]
