from datetime import datetime, time

from django.utils import timezone

from rest_framework import generics, status
from rest_framework.response import Response

from klinik_backend.core.exceptions import ClinicError, error_response
from klinik_backend.core.permissions import StaffPermission

from .serializers import (
	AppointmentCreateSerializer,
	AppointmentSerializer,
	AppointmentUpdateSerializer,
	FreeSlotsQuerySerializer,
)
from .services.scheduling import (
	cancel_appointment,
	create_appointment,
	delete_appointment,
	free_slots,
	get_for_actor,
	list_for_actor,
	update_appointment,
)


def _parse_day_bound(value: str, *, end: bool = False):
	"""Accept YYYY-MM-DD or a full ISO timestamp for ?from= / ?to=."""
	try:
		parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
	except ValueError:
		return None
	if len(value) == 10:
		parsed = datetime.combine(parsed.date(), time.max if end else time.min)
	if timezone.is_naive(parsed):
		parsed = timezone.make_aware(parsed, timezone.get_current_timezone())
	return parsed


class AppointmentListCreateView(generics.GenericAPIView):
	"""
	List and create appointments.

	GET  ?from=&to=&doctor_id=&status=   role-scoped list
	POST {patient_id, doctor_id, appointment_date, duration_minutes, notes?}
	"""
	permission_classes = [StaffPermission]

	def get(self, request, *args, **kwargs):
		params = request.query_params
		start = end = None
		if params.get('from'):
			start = _parse_day_bound(params['from'])
			if start is None:
				return Response({'detail': 'from must be an ISO date or timestamp.'}, status=status.HTTP_400_BAD_REQUEST)
		if params.get('to'):
			end = _parse_day_bound(params['to'], end=True)
			if end is None:
				return Response({'detail': 'to must be an ISO date or timestamp.'}, status=status.HTTP_400_BAD_REQUEST)

		doctor_id = params.get('doctor_id')
		if doctor_id not in (None, ''):
			try:
				doctor_id = int(doctor_id)
			except ValueError:
				return Response({'detail': 'doctor_id must be an integer.'}, status=status.HTTP_400_BAD_REQUEST)
		else:
			doctor_id = None

		appointments = list_for_actor(
			user=request.user,
			start=start,
			end=end,
			doctor_id=doctor_id,
			status=params.get('status') or None,
		)
		return Response(AppointmentSerializer(list(appointments), many=True).data, status=status.HTTP_200_OK)

	def post(self, request, *args, **kwargs):
		write_serializer = AppointmentCreateSerializer(data=request.data)
		write_serializer.is_valid(raise_exception=True)

		try:
			appointment = create_appointment(data=dict(write_serializer.validated_data), user=request.user)
		except ClinicError as e:
			return error_response(e)

		return Response(AppointmentSerializer(appointment).data, status=status.HTTP_201_CREATED)


class AppointmentDetailView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def get(self, request, pk, *args, **kwargs):
		try:
			appointment = get_for_actor(appointment_id=pk, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(AppointmentSerializer(appointment).data, status=status.HTTP_200_OK)

	def patch(self, request, pk, *args, **kwargs):
		write_serializer = AppointmentUpdateSerializer(data=request.data)
		write_serializer.is_valid(raise_exception=True)

		try:
			appointment = update_appointment(
				appointment_id=pk,
				patch=dict(write_serializer.validated_data),
				user=request.user,
			)
		except ClinicError as e:
			return error_response(e)

		return Response(AppointmentSerializer(appointment).data, status=status.HTTP_200_OK)

	def delete(self, request, pk, *args, **kwargs):
		try:
			delete_appointment(appointment_id=pk, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(status=status.HTTP_204_NO_CONTENT)


class AppointmentCancelView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def post(self, request, pk, *args, **kwargs):
		try:
			appointment = cancel_appointment(appointment_id=pk, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(AppointmentSerializer(appointment).data, status=status.HTTP_200_OK)


class FreeSlotsView(generics.GenericAPIView):
	"""GET ?doctor_id=&date=YYYY-MM-DD&duration_minutes= -> bookable start times."""
	permission_classes = [StaffPermission]

	def get(self, request, *args, **kwargs):
		query = FreeSlotsQuerySerializer(data=request.query_params)
		query.is_valid(raise_exception=True)
		data = query.validated_data

		try:
			slots = free_slots(
				doctor_id=data['doctor_id'],
				day=data['date'],
				duration_minutes=data['duration_minutes'],
			)
		except ClinicError as e:
			return error_response(e)

		return Response(
			{
				'doctor_id': data['doctor_id'],
				'date': data['date'].isoformat(),
				'duration_minutes': data['duration_minutes'],
				'slots': [slot.isoformat() for slot in slots],
			},
			status=status.HTTP_200_OK,
		)
