from django.urls import path
from . import views

urlpatterns = [
    path("api/conversations/", views.conversations, name="conversations"),
    path("api/conversation/<int:user_id>/", views.conversation, name="conversation"),
    path("api/send/", views.send, name="send_message"),
    path("api/unread/", views.unread, name="unread_count"),
]
