"""
Configuration settings for the gradebook app.

These values can be overridden in Django settings by prefixing with GRADEBOOK_.
For example, to change MARKS_CACHE_TTL:
    GRADEBOOK_MARKS_CACHE_TTL = 60  # seconds

All configuration values are lazily loaded to avoid Django setup issues.
"""


def _get_setting(name, default):
    """Get a gradebook setting from Django settings or use default."""
    from django.conf import settings
    return getattr(settings, f'GRADEBOOK_{name}', default)


# Define defaults as constants for direct use when Django settings are not needed
_DEFAULTS = {
    # File upload limits
    'MAX_FILE_SIZE': 5 * 1024 * 1024,  # 5 MB
    'IMPORT_UPLOAD_DIR': 'imports',  # relative to MEDIA_ROOT

    # Per-term status: PASS when the term average reaches this mark
    'STATUS_PASS_MARK': 50,

    # Promotion: first matching class prefix wins, otherwise the default
    'PROMOTION_THRESHOLDS': (
        ('PREP', 45),
        ('S1', 45),
        ('S2', 50),
        ('S3', 60),
    ),
    'DEFAULT_PROMOTION_THRESHOLD': 60,

    # Academic years offered in forms and imports
    'ACADEMIC_YEARS': ('2024', '2025', '2026', '2027'),

    # Cohort marks listing cache
    'MARKS_CACHE_TTL': 5 * 60,  # seconds

    # Export settings
    'EXCEL_HEADER_COLOR': '4F46E5',

    # Celery task settings
    'TASK_MAX_RETRIES': 3,
    'TASK_RETRY_DELAY': 60,  # seconds, doubled on every retry
    'IMPORT_TASK_TIME_LIMIT': 10 * 60,  # seconds
}


class _ConfigProxy:
    """
    Lazy configuration proxy that loads settings only when accessed.
    This avoids Django setup issues during module import.
    """

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


# Module-level proxy object for attribute access
_config = _ConfigProxy()


def __getattr__(name):
    """Enable module-level attribute access via the config proxy."""
    return getattr(_config, name)
