import json
from channels.generic.websocket import AsyncWebsocketConsumer
from channels.db import database_sync_to_async

from apps.riders.models import DeliveryPartner
from .services import partner_group


class LocationConsumer(AsyncWebsocketConsumer):
    """
    Read-only live feed of one partner's position.
    Samples come in over HTTP; this socket only fans them out.
    """

    async def connect(self):
        self.partner_id = self.scope['url_route']['kwargs']['partner_id']
        self.group_name = partner_group(self.partner_id)
        self.user = self.scope["user"]

        if self.user.is_anonymous:
            await self.close()
            return

        if not await self.can_watch(self.user, self.partner_id):
            await self.close()
            return

        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.group_name, self.channel_name)

    @database_sync_to_async
    def can_watch(self, user, partner_id):
        if user.is_staff:
            return True
        return DeliveryPartner.objects.filter(id=partner_id, user=user).exists()

    async def receive(self, text_data=None, bytes_data=None):
        # Clients do not publish on this socket
        return

    async def location_update(self, event):
        await self.send(text_data=json.dumps({
            'type': 'partner_location',
            'lat': event['lat'],
            'lng': event['lng'],
            'heading': event.get('heading'),
            'sampled_at': event['sampled_at'],
        }))
