from django.urls import path
from . import views

app_name = 'gradebook'

urlpatterns = [
    # Marks
    path('marks/', views.marks_overview, name='marks_overview'),
    path('marks/export/', views.marks_export, name='marks_export'),
    path('marks/template/<str:class_name>/', views.import_template, name='import_template'),
    path('marks/<uuid:student_id>/', views.mark_entry, name='mark_entry'),

    # Yearly overview and promotion
    path('yearly/', views.yearly_overview, name='yearly_overview'),
    path('promotion/<str:class_name>/', views.promotion_list, name='promotion_list'),

    # Report cards
    path('reports/<uuid:student_id>/', views.student_report, name='student_report'),
    path('reports/<uuid:student_id>/print/', views.student_report_print, name='student_report_print'),
    path('reports/class/<str:class_name>/', views.class_report_cards, name='class_report_cards'),
]
