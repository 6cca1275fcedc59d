from functools import wraps

from django.contrib.auth.views import redirect_to_login
from django.http import JsonResponse


def is_school_admin(user):
    """Check if user is staff or superuser."""
    return user.is_superuser or user.is_staff


def admin_required(view_func):
    """Decorator to require staff or superuser access."""
    @wraps(view_func)
    def _wrapped_view(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return redirect_to_login(request.get_full_path())
        if not is_school_admin(request.user):
            return JsonResponse({'success': False, 'error': 'Permission denied'}, status=403)
        return view_func(request, *args, **kwargs)
    return _wrapped_view


def form_errors(form):
    """400 response listing a bound form's field errors."""
    return JsonResponse(
        {'success': False, 'errors': form.errors.get_json_data()},
        status=400
    )


def student_form_data(student, posted):
    """Stored student fields with the posted ones laid over them."""
    data = {
        'name': student.name,
        'class_name': student.class_name,
        'sex': student.sex,
        'photo': student.photo,
    }
    data.update({key: posted[key] for key in data if key in posted})
    return data
