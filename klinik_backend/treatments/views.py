from datetime import datetime, time

from django.utils import timezone

from rest_framework import generics, status
from rest_framework.response import Response

from klinik_backend.core.exceptions import ClinicError, error_response
from klinik_backend.core.permissions import StaffPermission

from .serializers import (
	IncomeSummarySerializer,
	PaymentSerializer,
	TreatmentCreateSerializer,
	TreatmentLockSerializer,
	TreatmentRemindersSerializer,
	TreatmentSerializer,
	TreatmentUpdateSerializer,
)
from .services import (
	cancel_treatment,
	complete_treatment,
	create_treatment,
	delete_treatment,
	income_summary,
	list_treatments,
	lock_treatments,
	record_payment,
	treatment_reminders,
	update_treatment,
)


class TreatmentListCreateView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def get(self, request, *args, **kwargs):
		patient_id = request.query_params.get('patient_id')
		if patient_id not in (None, ''):
			try:
				patient_id = int(patient_id)
			except ValueError:
				return Response({'detail': 'patient_id must be an integer.'}, status=status.HTTP_400_BAD_REQUEST)
		else:
			patient_id = None

		unpaid = request.query_params.get('unpaid', '').lower() in ('1', 'true', 'yes')
		try:
			treatments = list_treatments(
				user=request.user,
				patient_id=patient_id,
				status=request.query_params.get('status') or None,
				unpaid=unpaid,
			)
		except ClinicError as e:
			return error_response(e)
		return Response(TreatmentSerializer(treatments, many=True).data, status=status.HTTP_200_OK)

	def post(self, request, *args, **kwargs):
		write_serializer = TreatmentCreateSerializer(data=request.data)
		write_serializer.is_valid(raise_exception=True)

		try:
			treatment = create_treatment(data=dict(write_serializer.validated_data), user=request.user)
		except ClinicError as e:
			return error_response(e)

		return Response(TreatmentSerializer(treatment).data, status=status.HTTP_201_CREATED)


class TreatmentDetailView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def patch(self, request, pk, *args, **kwargs):
		write_serializer = TreatmentUpdateSerializer(data=request.data)
		write_serializer.is_valid(raise_exception=True)

		try:
			treatment = update_treatment(
				treatment_id=pk,
				patch=dict(write_serializer.validated_data),
				user=request.user,
			)
		except ClinicError as e:
			return error_response(e)

		return Response(TreatmentSerializer(treatment).data, status=status.HTTP_200_OK)

	def delete(self, request, pk, *args, **kwargs):
		try:
			delete_treatment(treatment_id=pk, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(status=status.HTTP_204_NO_CONTENT)


class TreatmentLockView(generics.GenericAPIView):
	"""End-of-day lock. POST {"until": "<timestamp>"}"""
	permission_classes = [StaffPermission]

	def post(self, request, *args, **kwargs):
		serializer = TreatmentLockSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)

		try:
			count = lock_treatments(until=serializer.validated_data['until'], user=request.user)
		except ClinicError as e:
			return error_response(e)

		return Response({'locked': count}, status=status.HTTP_200_OK)


class IncomeView(generics.GenericAPIView):
	"""GET ?from=YYYY-MM-DD&to=YYYY-MM-DD (both inclusive)."""
	permission_classes = [StaffPermission]

	def get(self, request, *args, **kwargs):
		from_str = request.query_params.get('from')
		to_str = request.query_params.get('to')
		if not from_str or not to_str:
			return Response(
				{'detail': 'Provide ?from=YYYY-MM-DD&to=YYYY-MM-DD.'},
				status=status.HTTP_400_BAD_REQUEST,
			)
		try:
			start_date = datetime.strptime(from_str, '%Y-%m-%d').date()
			end_date = datetime.strptime(to_str, '%Y-%m-%d').date()
		except ValueError:
			return Response(
				{'detail': 'Dates must be in format YYYY-MM-DD.'},
				status=status.HTTP_400_BAD_REQUEST,
			)

		tz = timezone.get_current_timezone()
		start_dt = timezone.make_aware(datetime.combine(start_date, time.min), tz)
		end_dt = timezone.make_aware(datetime.combine(end_date, time.max), tz)

		try:
			summary = income_summary(start=start_dt, end=end_dt, user=request.user)
		except ClinicError as e:
			return error_response(e)

		return Response(IncomeSummarySerializer(summary).data, status=status.HTTP_200_OK)


class TreatmentPaymentView(generics.GenericAPIView):
	"""POST {"amount": "<decimal>", "note": "<optional>"}"""
	permission_classes = [StaffPermission]

	def post(self, request, pk, *args, **kwargs):
		serializer = PaymentSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)

		try:
			treatment = record_payment(
				treatment_id=pk,
				amount=serializer.validated_data['amount'],
				note=serializer.validated_data.get('note', ''),
				user=request.user,
			)
		except ClinicError as e:
			return error_response(e)

		return Response(TreatmentSerializer(treatment).data, status=status.HTTP_200_OK)


class TreatmentCompleteView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def post(self, request, pk, *args, **kwargs):
		try:
			treatment = complete_treatment(treatment_id=pk, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(TreatmentSerializer(treatment).data, status=status.HTTP_200_OK)


class TreatmentCancelView(generics.GenericAPIView):
	permission_classes = [StaffPermission]

	def post(self, request, pk, *args, **kwargs):
		try:
			treatment = cancel_treatment(treatment_id=pk, user=request.user)
		except ClinicError as e:
			return error_response(e)
		return Response(TreatmentSerializer(treatment).data, status=status.HTTP_200_OK)


class TreatmentRemindersView(generics.GenericAPIView):
	"""GET ?days=N  Planned treatments that are overdue or due within N days."""
	permission_classes = [StaffPermission]

	def get(self, request, *args, **kwargs):
		days = request.query_params.get('days', '7')
		try:
			days = int(days)
		except ValueError:
			return Response({'detail': 'days must be an integer.'}, status=status.HTTP_400_BAD_REQUEST)
		if days < 0:
			return Response({'detail': 'days must not be negative.'}, status=status.HTTP_400_BAD_REQUEST)

		reminders = treatment_reminders(user=request.user, days=days)
		return Response(TreatmentRemindersSerializer(reminders).data, status=status.HTTP_200_OK)
