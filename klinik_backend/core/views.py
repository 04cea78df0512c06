"""Core app views.

Contains:
- health: Health check endpoint
- LoginView / RefreshView / MeView: JWT authentication
- ChangePasswordView: own or (admin) other user's password
- Doctor list/create and activation views
- ActivityLogListView: read-only audit trail (admin)
"""

from django.db import DatabaseError, connection
from django.http import JsonResponse

from rest_framework import generics, status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from rest_framework_simplejwt.tokens import RefreshToken

from klinik_backend.core import audit
from klinik_backend.core.exceptions import ClinicError, error_response
from klinik_backend.core.models import ActivityLog
from klinik_backend.core.permissions import IsAdmin, StaffPermission
from klinik_backend.core.serializers import (
    ActivityLogSerializer,
    DoctorCreateSerializer,
    DoctorSerializer,
    LoginSerializer,
    PasswordChangeSerializer,
    RefreshSerializer,
    RoleSerializer,
    UserMeSerializer,
)
from klinik_backend.core.services import (
    activate_doctor,
    change_password,
    create_doctor,
    deactivate_doctor,
    list_doctors,
)


def health(request):
    """Health check endpoint - no authentication required."""
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1;')
    except DatabaseError as exc:
        return JsonResponse({'status': 'error', 'detail': str(exc)}, status=503)

    return JsonResponse({'status': 'ok'})


class LoginView(APIView):
    """Obtain JWT access and refresh tokens.

    POST /api/auth/login/
    Body: {"username": "...", "password": "..."}
    Returns: {"user": {...}, "access": "...", "refresh": "..."}
    """

    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = serializer.validated_data['user']

        refresh = RefreshToken.for_user(user)
        role = getattr(user, 'role', None)
        refresh['role'] = role.name if role else None
        access = refresh.access_token

        audit.record(user, audit.LOGIN, {'username': user.username})

        return Response(
            {
                'user': {
                    'id': user.id,
                    'username': user.username,
                    'email': user.email,
                    'first_name': user.first_name,
                    'last_name': user.last_name,
                    'role': RoleSerializer(role).data if role else None,
                },
                'access': str(access),
                'refresh': str(refresh),
            },
            status=status.HTTP_200_OK,
        )


class RefreshView(APIView):
    """Refresh JWT access token.

    POST /api/auth/refresh/
    Body: {"refresh": "..."}
    Returns: {"access": "..."}
    """

    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        serializer = RefreshSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        refresh = RefreshToken(serializer.validated_data['refresh'])
        return Response({'access': str(refresh.access_token)}, status=status.HTTP_200_OK)


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        return Response(UserMeSerializer(request.user).data, status=status.HTTP_200_OK)


class ChangePasswordView(APIView):
    """POST /api/users/<id>/password/ {"old_password"?, "new_password"}"""

    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        serializer = PasswordChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            change_password(
                target_id=pk,
                new_password=serializer.validated_data['new_password'],
                old_password=serializer.validated_data.get('old_password'),
                user=request.user,
            )
        except ClinicError as e:
            return error_response(e)

        return Response(status=status.HTTP_204_NO_CONTENT)


class DoctorListCreateView(generics.GenericAPIView):
    permission_classes = [StaffPermission]

    def get(self, request, *args, **kwargs):
        include_inactive = request.query_params.get('include_inactive') in ('1', 'true')
        doctors = list_doctors(include_inactive=include_inactive).select_related('queue_entry')
        return Response(DoctorSerializer(doctors, many=True).data, status=status.HTTP_200_OK)

    def post(self, request, *args, **kwargs):
        serializer = DoctorCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            doctor = create_doctor(data=dict(serializer.validated_data), user=request.user)
        except ClinicError as e:
            return error_response(e)

        return Response(DoctorSerializer(doctor).data, status=status.HTTP_201_CREATED)


class DoctorActivationView(APIView):
    permission_classes = [StaffPermission]
    activate = True

    def post(self, request, pk, *args, **kwargs):
        action = activate_doctor if self.activate else deactivate_doctor
        try:
            doctor = action(doctor_id=pk, user=request.user)
        except ClinicError as e:
            return error_response(e)
        return Response(DoctorSerializer(doctor).data, status=status.HTTP_200_OK)


class ActivityLogListView(generics.ListAPIView):
    """GET /api/activity-logs/?action_type=&user= (newest first)."""

    permission_classes = [IsAdmin]
    serializer_class = ActivityLogSerializer

    def get_queryset(self):
        qs = ActivityLog.objects.using('default').all()
        action_type = self.request.query_params.get('action_type')
        if action_type:
            qs = qs.filter(action_type=action_type)
        user_id = self.request.query_params.get('user')
        if user_id and user_id.isdigit():
            qs = qs.filter(user_id=int(user_id))
        return qs.order_by('-timestamp', '-id')
