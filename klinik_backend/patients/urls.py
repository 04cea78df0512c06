from django.urls import path

from .views import PatientAssignView, PatientDetailView, PatientListCreateView

app_name = 'patients'

urlpatterns = [
    path('patients/', PatientListCreateView.as_view(), name='list'),
    path('patients/<int:pk>/', PatientDetailView.as_view(), name='detail'),
    path('patients/<int:pk>/assign/', PatientAssignView.as_view(), name='assign'),
]
