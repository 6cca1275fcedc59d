from django.contrib import admin

from .models import Student


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('name', 'class_name', 'sex', 'created_at')
    list_filter = ('class_name', 'sex')
    search_fields = ('name',)
    ordering = ('class_name', 'name')
    readonly_fields = ('id', 'created_at', 'updated_at')
