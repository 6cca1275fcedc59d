from django.contrib import admin

from .models import Mark


@admin.register(Mark)
class MarkAdmin(admin.ModelAdmin):
    """Marks are normally written by the entry form or an import."""

    list_display = ('student', 'year', 'term', 'total', 'average', 'rank', 'status')
    list_filter = ('year', 'term', 'status', 'student__class_name')
    search_fields = ('student__name',)
    list_select_related = ('student',)
    readonly_fields = ('id', 'created_at', 'updated_at')
    autocomplete_fields = ('student',)
