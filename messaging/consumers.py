# messaging/consumers.py
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from .signals import notification_group


class NotificationConsumer(AsyncJsonWebsocketConsumer):
    async def connect(self):
        user = self.scope.get("user")
        if user is None or user.is_anonymous:
            await self.close()
            return
        self.group = notification_group(user.id)
        await self.channel_layer.group_add(self.group, self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        if hasattr(self, "group"):
            await self.channel_layer.group_discard(self.group, self.channel_name)

    async def new_message(self, event):
        await self.send_json({
            "type": "new_message",
            "count": event["count"],
        })
