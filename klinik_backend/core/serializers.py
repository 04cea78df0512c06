"""Serializers for the core app.

Contains serializers for User, Role, ActivityLog and authentication.
Follows the Read/Write serializer pattern: read serializers render models,
write serializers only check the request shape.
"""

from rest_framework import serializers

from klinik_backend.core.models import ActivityLog, Role, User


# -----------------------------------------------------------------------------
# Role / User Serializers
# -----------------------------------------------------------------------------


class RoleSerializer(serializers.ModelSerializer):
    """Read-only serializer for Role model."""

    class Meta:
        model = Role
        fields = ['id', 'name', 'label']
        read_only_fields = fields


class UserMeSerializer(serializers.ModelSerializer):
    """Serializer for the /auth/me/ endpoint."""

    role = RoleSerializer(read_only=True)

    class Meta:
        model = User
        fields = [
            'id',
            'username',
            'email',
            'first_name',
            'last_name',
            'is_active',
            'role',
        ]
        read_only_fields = fields


class DoctorSerializer(serializers.ModelSerializer):
    display_name = serializers.CharField(read_only=True)
    in_queue = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id',
            'username',
            'email',
            'first_name',
            'last_name',
            'display_name',
            'is_active',
            'in_queue',
        ]
        read_only_fields = fields

    def get_in_queue(self, obj):
        entry = getattr(obj, 'queue_entry', None)
        return bool(entry is not None and entry.active)


class DoctorCreateSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(write_only=True, min_length=8)
    email = serializers.EmailField(required=False, allow_blank=True, default='')
    first_name = serializers.CharField(required=False, allow_blank=True, default='', max_length=150)
    last_name = serializers.CharField(required=False, allow_blank=True, default='', max_length=150)


class PasswordChangeSerializer(serializers.Serializer):
    old_password = serializers.CharField(write_only=True, required=False, allow_blank=True)
    new_password = serializers.CharField(write_only=True, required=True, min_length=8)


# -----------------------------------------------------------------------------
# ActivityLog Serializers
# -----------------------------------------------------------------------------


class ActivityLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = ActivityLog
        fields = ['id', 'user_id', 'user_name', 'action_type', 'details', 'timestamp']
        read_only_fields = fields


# -----------------------------------------------------------------------------
# Authentication Serializers
# -----------------------------------------------------------------------------


class LoginSerializer(serializers.Serializer):
    """Validates credentials and returns the user."""

    username = serializers.CharField(required=True)
    password = serializers.CharField(required=True, write_only=True)

    def validate(self, attrs):
        from django.contrib.auth import authenticate

        user = authenticate(username=attrs.get('username'), password=attrs.get('password'))
        if user is None:
            raise serializers.ValidationError('Invalid credentials.')
        if not user.is_active:
            raise serializers.ValidationError('User account is disabled.')

        attrs['user'] = user
        return attrs


class RefreshSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=True)

    def validate_refresh(self, value):
        from rest_framework_simplejwt.exceptions import TokenError
        from rest_framework_simplejwt.tokens import RefreshToken

        try:
            RefreshToken(value)
        except TokenError as e:
            raise serializers.ValidationError(f'Invalid or expired refresh token: {e}')
        return value
