from rest_framework import serializers

from klinik_backend.patients.models import Patient
from klinik_backend.patients.utils import format_phone_number


class PatientSerializer(serializers.ModelSerializer):
    phone_display = serializers.SerializerMethodField()
    assigned_doctor_name = serializers.SerializerMethodField()

    class Meta:
        model = Patient
        fields = [
            'id',
            'name',
            'phone',
            'phone_display',
            'anamnez',
            'assigned_doctor_id',
            'assigned_doctor_name',
            'assignment_type',
            'assignment_date',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_phone_display(self, obj):
        return format_phone_number(obj.phone)

    def get_assigned_doctor_name(self, obj):
        doctor = obj.assigned_doctor
        return doctor.display_name if doctor is not None else None


class PatientCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    phone = serializers.CharField(max_length=32)
    anamnez = serializers.CharField(required=False, allow_blank=True, default='')
    doctor_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class PatientUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200, required=False)
    phone = serializers.CharField(max_length=32, required=False)
    anamnez = serializers.CharField(required=False, allow_blank=True)


class PatientAssignSerializer(serializers.Serializer):
    doctor_id = serializers.IntegerField(min_value=1)
