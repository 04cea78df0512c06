from rest_framework import generics, status
from rest_framework.response import Response

from klinik_backend.core.exceptions import ClinicError, error_response
from klinik_backend.core.permissions import StaffPermission

from .serializers import AssignNextSerializer, DoctorQueueEntrySerializer
from .services import assign_next, dequeue_doctor, enqueue_doctor, peek_next, queue_snapshot


class DoctorQueueView(generics.GenericAPIView):
	"""Active rotation in position order plus the doctor that is next up."""
	permission_classes = [StaffPermission]

	def get(self, request, *args, **kwargs):
		entries = queue_snapshot()
		upcoming = peek_next()
		return Response(
			{
				'strategy_next_doctor_id': upcoming.doctor_id if upcoming is not None else None,
				'entries': DoctorQueueEntrySerializer(entries, many=True).data,
			},
			status=status.HTTP_200_OK,
		)


class AssignNextView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def post(self, request, *args, **kwargs):
		serializer = AssignNextSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)
		patient_id = serializer.validated_data['patient_id']

		try:
			doctor_id = assign_next(patient_id=patient_id, user=request.user)
		except ClinicError as e:
			return error_response(e)

		return Response({'patient_id': patient_id, 'doctor_id': doctor_id}, status=status.HTTP_200_OK)


class EnqueueDoctorView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def post(self, request, doctor_id, *args, **kwargs):
		try:
			entry = enqueue_doctor(doctor_id=doctor_id, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(DoctorQueueEntrySerializer(entry).data, status=status.HTTP_200_OK)


class DequeueDoctorView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def post(self, request, doctor_id, *args, **kwargs):
		try:
			dequeue_doctor(doctor_id=doctor_id, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(status=status.HTTP_204_NO_CONTENT)
