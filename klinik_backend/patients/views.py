from rest_framework import generics, status
from rest_framework.response import Response

from klinik_backend.core.exceptions import ClinicError, error_response
from klinik_backend.core.permissions import StaffPermission

from .serializers import (
	PatientAssignSerializer,
	PatientCreateSerializer,
	PatientSerializer,
	PatientUpdateSerializer,
)
from .services import (
	assign_manually,
	create_patient,
	delete_patient,
	get_patient,
	list_patients,
	update_patient,
)


class PatientListCreateView(generics.GenericAPIView):
	"""
	GET  ?q=   role-scoped list, optional name/phone search
	POST       register; without doctor_id the doctor queue picks one
	"""
	permission_classes = [StaffPermission]

	def get(self, request, *args, **kwargs):
		patients = list_patients(user=request.user, search=request.query_params.get('q'))
		return Response(PatientSerializer(patients, many=True).data, status=status.HTTP_200_OK)

	def post(self, request, *args, **kwargs):
		write_serializer = PatientCreateSerializer(data=request.data)
		write_serializer.is_valid(raise_exception=True)

		try:
			patient = create_patient(data=dict(write_serializer.validated_data), user=request.user)
		except ClinicError as e:
			return error_response(e)

		return Response(PatientSerializer(patient).data, status=status.HTTP_201_CREATED)


class PatientDetailView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def get(self, request, pk, *args, **kwargs):
		try:
			patient = get_patient(patient_id=pk, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(PatientSerializer(patient).data, status=status.HTTP_200_OK)

	def patch(self, request, pk, *args, **kwargs):
		write_serializer = PatientUpdateSerializer(data=request.data)
		write_serializer.is_valid(raise_exception=True)

		try:
			patient = update_patient(patient_id=pk, patch=dict(write_serializer.validated_data), user=request.user)
		except ClinicError as e:
			return error_response(e)

		return Response(PatientSerializer(patient).data, status=status.HTTP_200_OK)

	def delete(self, request, pk, *args, **kwargs):
		try:
			delete_patient(patient_id=pk, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(status=status.HTTP_204_NO_CONTENT)


class PatientAssignView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def post(self, request, pk, *args, **kwargs):
		serializer = PatientAssignSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)

		try:
			patient = assign_manually(patient_id=pk, doctor_id=serializer.validated_data['doctor_id'], user=request.user)
		except ClinicError as e:
			return error_response(e)

		return Response(PatientSerializer(patient).data, status=status.HTTP_200_OK)
