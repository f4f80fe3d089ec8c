from django.db.models.signals import pre_save
from django.dispatch import receiver
from django.contrib.auth import get_user_model

from hospital.utils.display_id import generate_display_id

User = get_user_model()


@receiver(pre_save, sender=User)
def assign_display_id(sender, instance, raw=False, using=None, **kwargs):
    """
    Give every new user a role-prefixed display ID (A/D/S/U + 4 digits).
    """
    if raw or instance.display_user_id:
        return
    instance.display_user_id = generate_display_id(instance.role, using=using)
