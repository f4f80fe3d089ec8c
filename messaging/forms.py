# messaging/forms.py
from django import forms
from django.contrib.auth import get_user_model

from .models import Message

User = get_user_model()


class MessageForm(forms.ModelForm):
    class Meta:
        model = Message
        fields = ['recipient', 'subject', 'body']
        error_messages = {
            'body': {'required': "Message text cannot be empty."},
        }

    recipient = forms.ModelChoiceField(
        queryset=User.objects.filter(is_active=True),
        label="Recipient",
        error_messages={
            "required": "Recipient is required.",
            "invalid_choice": "Recipient not found.",
        },
    )

    def __init__(self, *args, sender=None, **kwargs):
        self.sender = sender
        super().__init__(*args, **kwargs)

    def clean_recipient(self):
        recipient = self.cleaned_data["recipient"]
        if self.sender is not None and recipient.pk == self.sender.pk:
            raise forms.ValidationError("You cannot send a message to yourself.")
        return recipient
