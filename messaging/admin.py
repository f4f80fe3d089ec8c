from django.contrib import admin

from .models import Message


class MessageAdmin(admin.ModelAdmin):
    list_display = ['sender', 'recipient', 'subject', 'timestamp', 'is_read']
    list_filter = ['is_read']


admin.site.register(Message, MessageAdmin)
