from django.urls import path
from . import views

app_name = 'students'

urlpatterns = [
    # Student list
    path('', views.index, name='index'),

    # Student CRUD
    path('create/', views.student_create, name='student_create'),
    path('<uuid:pk>/', views.student_detail, name='student_detail'),
    path('<uuid:pk>/edit/', views.student_edit, name='student_edit'),
    path('<uuid:pk>/delete/', views.student_delete, name='student_delete'),

    # Marks import
    path('import/', views.marks_import, name='marks_import'),
    path('import/<str:task_id>/status/', views.marks_import_status, name='marks_import_status'),
]
