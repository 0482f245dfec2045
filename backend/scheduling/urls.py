"""
URL configuration for the scheduling app.
"""

from django.urls import path
from . import views

urlpatterns = [
    path('', views.api_info, name='api-info'),
    path('schedule/', views.generate_schedule, name='generate-schedule'),
    path('schedule/regenerate/', views.regenerate_schedule, name='regenerate-schedule'),
    path('schedule/range/', views.schedule_range, name='schedule-range'),
    path('schedule/explain/', views.explain_task, name='explain-task'),
]
