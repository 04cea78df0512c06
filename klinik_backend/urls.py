"""Klinik backend URL configuration.

API routes (all under /api/):
    auth/, health/, users/, doctors/, activity-logs/  - core
    patients/                                          - patients
    doctor-queue/                                      - doctor_queue
    appointments/                                      - appointments
    treatments/                                        - treatments
"""

from django.contrib import admin
from django.http import HttpResponse
from django.urls import include, path


def root(request):
    """Plain-text liveness response for load balancers."""
    return HttpResponse("Klinik backend is running.")


urlpatterns = [
    path("", root, name="root"),
    path("admin/", admin.site.urls),

    path("api/", include("klinik_backend.core.urls")),
    path("api/", include("klinik_backend.patients.urls")),
    path("api/", include("klinik_backend.doctor_queue.urls")),
    path("api/", include("klinik_backend.appointments.urls")),
    path("api/", include("klinik_backend.treatments.urls")),
]
