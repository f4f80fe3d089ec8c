# messaging/signals.py
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Message


def notification_group(user_id):
    return f"user_{user_id}"


@receiver(post_save, sender=Message)
def notify_new_message(sender, instance, created, **kwargs):
    if not created:
        return
    layer = get_channel_layer()
    if layer is None:
        return
    async_to_sync(layer.group_send)(
        notification_group(instance.recipient_id),
        {
            "type": "new_message",
            "count": Message.objects.filter(
                recipient_id=instance.recipient_id, is_read=False
            ).count(),
        },
    )
