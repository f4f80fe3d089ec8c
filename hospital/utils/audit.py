import logging

from hospital.models import ActivityLog

logger = logging.getLogger(__name__)


def log_action(user, action, target_user=None, details=""):
    logger.info("%s by user %s: %s", action, getattr(user, "pk", None), details)
    return ActivityLog.objects.create(
        user=user,
        action=action,
        target_user=target_user,
        details=details,
    )


def describe_user(user):
    """Short human label used in activity log lines, e.g. "'Jane Doe' (U0004)"."""
    if user is None:
        return "unknown user"
    return f"'{user.get_full_name_or_username()}' ({user.display_user_id or user.pk})"
