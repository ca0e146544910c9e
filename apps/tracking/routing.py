from django.urls import path
from .consumers import LocationConsumer

websocket_urlpatterns = [
    path('ws/tracking/<uuid:partner_id>/', LocationConsumer.as_asgi()),
]
