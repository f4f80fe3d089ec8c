from .audit import describe_user, log_action
from .display_id import display_id_is_valid, generate_display_id, sync_role_counters

__all__ = [
    "describe_user",
    "display_id_is_valid",
    "generate_display_id",
    "log_action",
    "sync_role_counters",
]
