import logging
from functools import wraps

from django.core.exceptions import PermissionDenied, ValidationError
from django.db import DatabaseError
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def api_response(success=True, message="", data=None, status=200):
    return JsonResponse({"success": success, "message": message, "data": data}, status=status)


def error_message(exc):
    return " ".join(exc.messages)


def unauthenticated_response():
    return api_response(False, "Authentication required. Please log in.", status=401)


class RoleRequiredMixin:
    allowed_roles = []

    def dispatch(self, request, *args, **kwargs):
        if not request.user.is_authenticated:
            return unauthenticated_response()

        if request.user.role not in self.allowed_roles:
            raise PermissionDenied("User not allowed")

        return super().dispatch(request, *args, **kwargs)


def api_view(*roles, methods=("GET",)):
    """
    Wrap a JSON endpoint.

    Checks the HTTP method, the session and the user's role, then maps
    exceptions raised by the view onto the API's error responses:

    * ``ValidationError`` -> 400 with the validation message
    * ``PermissionDenied`` -> 403
    * ``DatabaseError`` -> 500 with a generic message (the transaction has
      already been rolled back by ``transaction.atomic``)

    With no ``roles`` any authenticated user is accepted.
    """
    def decorator(view):
        @wraps(view)
        def wrapped(request, *args, **kwargs):
            if request.method not in methods:
                return api_response(False, f"Method {request.method} not allowed.", status=405)
            if not request.user.is_authenticated:
                return unauthenticated_response()
            try:
                if roles and request.user.role not in roles:
                    raise PermissionDenied("You do not have permission to perform this action.")
                return view(request, *args, **kwargs)
            except ValidationError as exc:
                return api_response(False, error_message(exc), status=400)
            except PermissionDenied as exc:
                return api_response(False, str(exc) or "Permission denied.", status=403)
            except DatabaseError:
                logger.exception("Database error in %s", view.__name__)
                return api_response(False, "A database error occurred. Please try again.", status=500)

        return wrapped

    return decorator
