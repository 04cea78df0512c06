"""Appointment URLs.

Prefix: /api/
Routes:
    GET/POST     /api/appointments/
    GET          /api/appointments/free-slots/
    GET/PATCH/DELETE /api/appointments/<id>/
    POST         /api/appointments/<id>/cancel/
"""

from django.urls import path

from .views import (
    AppointmentCancelView,
    AppointmentDetailView,
    AppointmentListCreateView,
    FreeSlotsView,
)

app_name = 'appointments'

urlpatterns = [
    path('appointments/', AppointmentListCreateView.as_view(), name='list'),
    path('appointments/free-slots/', FreeSlotsView.as_view(), name='free_slots'),
    path('appointments/<int:pk>/', AppointmentDetailView.as_view(), name='detail'),
    path('appointments/<int:pk>/cancel/', AppointmentCancelView.as_view(), name='cancel'),
]
