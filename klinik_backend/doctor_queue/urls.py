from django.urls import path

from .views import AssignNextView, DequeueDoctorView, DoctorQueueView, EnqueueDoctorView

app_name = 'doctor_queue'

urlpatterns = [
    path('doctor-queue/', DoctorQueueView.as_view(), name='snapshot'),
    path('doctor-queue/assign/', AssignNextView.as_view(), name='assign'),
    path('doctor-queue/<int:doctor_id>/enqueue/', EnqueueDoctorView.as_view(), name='enqueue'),
    path('doctor-queue/<int:doctor_id>/dequeue/', DequeueDoctorView.as_view(), name='dequeue'),
]
