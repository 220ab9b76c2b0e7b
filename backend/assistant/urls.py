"""
URL configuration for the assistant app.
"""

from django.urls import path
from . import views

urlpatterns = [
    path('', views.api_info, name='api-info'),
    path('tasks/', views.task_list, name='task-list'),
    path('tasks/reorder/', views.reorder_tasks, name='reorder-tasks'),
    path('tasks/calendar/', views.task_calendar, name='task-calendar'),
    path('tasks/<str:task_id>/', views.task_detail, name='task-detail'),
    path('tasks/<str:task_id>/toggle/', views.toggle_task, name='toggle-task'),
    path('assistant/analysis/', views.task_analysis, name='task-analysis'),
    path('assistant/suggestions/', views.suggestion_list, name='suggestion-list'),
    path('assistant/suggestions/<int:index>/apply/', views.apply_suggestion_view, name='apply-suggestion'),
    path('assistant/pending/', views.pending_status, name='pending-status'),
    path('assistant/pending/confirm/', views.confirm_pending, name='confirm-pending'),
    path('assistant/pending/cancel/', views.cancel_pending, name='cancel-pending'),
    path('assistant/preview/', views.preview_suggestions, name='preview-suggestions'),
]
