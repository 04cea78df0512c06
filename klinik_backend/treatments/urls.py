from django.urls import path

from .views import (
    IncomeView,
    TreatmentCancelView,
    TreatmentCompleteView,
    TreatmentDetailView,
    TreatmentListCreateView,
    TreatmentLockView,
    TreatmentPaymentView,
    TreatmentRemindersView,
)

app_name = 'treatments'

urlpatterns = [
    path('treatments/', TreatmentListCreateView.as_view(), name='list'),
    path('treatments/income/', IncomeView.as_view(), name='income'),
    path('treatments/lock/', TreatmentLockView.as_view(), name='lock'),
    path('treatments/reminders/', TreatmentRemindersView.as_view(), name='reminders'),
    path('treatments/<int:pk>/', TreatmentDetailView.as_view(), name='detail'),
    path('treatments/<int:pk>/payments/', TreatmentPaymentView.as_view(), name='payments'),
    path('treatments/<int:pk>/complete/', TreatmentCompleteView.as_view(), name='complete'),
    path('treatments/<int:pk>/cancel/', TreatmentCancelView.as_view(), name='cancel'),
]
