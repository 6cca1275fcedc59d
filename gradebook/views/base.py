import logging
from functools import wraps

from django.apps import apps
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def is_school_admin(user):
    """Check if user is staff or superuser."""
    return user.is_superuser or user.is_staff


def admin_required(view_func):
    """Decorator to require staff or superuser access. Use after login_required."""
    @wraps(view_func)
    def _wrapped_view(request, *args, **kwargs):
        if not is_school_admin(request.user):
            logger.warning(f"Permission denied for {request.user} on {view_func.__name__}")
            return JsonResponse({'success': False, 'error': 'Permission denied'}, status=403)
        return view_func(request, *args, **kwargs)
    return _wrapped_view


def get_store():
    """The process-wide MarkStore held by the gradebook app."""
    return apps.get_app_config('gradebook').store


def error_response(message, status=400):
    return JsonResponse({'success': False, 'error': message}, status=status)


def form_error_response(form):
    """400 response listing the form's field errors."""
    return JsonResponse(
        {'success': False, 'errors': form.errors.get_json_data()},
        status=400
    )
