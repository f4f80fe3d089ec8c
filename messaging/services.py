import logging

from django.core.exceptions import ValidationError
from django.db.models import Count, Q

from .forms import MessageForm
from .models import Message

logger = logging.getLogger(__name__)


def unread_count(user):
    return Message.objects.filter(recipient=user, is_read=False).count()


def send_message(sender, recipient_id, body, subject=""):
    form = MessageForm(
        {"recipient": recipient_id, "subject": subject or "", "body": body or ""},
        sender=sender,
    )
    if not form.is_valid():
        raise ValidationError([error for errors in form.errors.values() for error in errors])

    message = form.save(commit=False)
    message.sender = sender
    message.save()
    logger.info("Message %s sent from user %s to user %s", message.pk, sender.pk, message.recipient_id)
    return message


def conversation(user, other):
    """All messages between two users, oldest first; marks ``other``'s messages to ``user`` read."""
    Message.objects.filter(sender=other, recipient=user, is_read=False).update(is_read=True)
    return (
        Message.objects.filter(Q(sender=user, recipient=other) | Q(sender=other, recipient=user))
        .select_related("sender", "recipient")
        .order_by("timestamp", "id")
    )


def conversation_list(user):
    """One entry per conversation partner, most recent conversation first."""
    unread = dict(
        Message.objects.filter(recipient=user, is_read=False)
        .order_by()
        .values_list("sender")
        .annotate(total=Count("id"))
    )

    latest = {}
    messages = (
        Message.objects.filter(Q(sender=user) | Q(recipient=user))
        .select_related("sender", "recipient")
        .order_by("-timestamp", "-id")
    )
    for message in messages:
        partner = message.recipient if message.sender_id == user.pk else message.sender
        if partner.pk not in latest:
            latest[partner.pk] = {
                "partner": partner,
                "last_message": message,
                "unread": unread.get(partner.pk, 0),
            }
    return list(latest.values())
