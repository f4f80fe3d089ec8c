from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404

from hospital.mixins import api_response, api_view
from hospital.views import read_payload, user_json

from . import services

User = get_user_model()


def message_json(message):
    return {
        "id": message.pk,
        "sender_id": message.sender_id,
        "recipient_id": message.recipient_id,
        "subject": message.subject,
        "body": message.body,
        "timestamp": message.timestamp,
        "is_read": message.is_read,
    }


@api_view()
def conversations(request):
    data = [
        {
            "partner": user_json(entry["partner"]),
            "last_message": message_json(entry["last_message"]),
            "unread": entry["unread"],
        }
        for entry in services.conversation_list(request.user)
    ]
    return api_response(True, data=data)


@api_view()
def conversation(request, user_id):
    other = get_object_or_404(User, id=user_id)
    messages = services.conversation(request.user, other)
    return api_response(
        True,
        data={"partner": user_json(other), "messages": [message_json(m) for m in messages]},
    )


@api_view(methods=("POST",))
def send(request):
    payload = read_payload(request)
    message = services.send_message(
        request.user,
        payload.get("recipient_id"),
        payload.get("body"),
        subject=payload.get("subject", ""),
    )
    return api_response(True, "Message sent.", message_json(message), status=201)


@api_view()
def unread(request):
    return api_response(True, data={"unread_count": services.unread_count(request.user)})
