from rest_framework import serializers

from klinik_backend.appointments.models import Appointment


class AppointmentSerializer(serializers.ModelSerializer):
    doctor_name = serializers.SerializerMethodField()
    patient_name = serializers.CharField(source='patient.name', read_only=True)
    end_time = serializers.DateTimeField(read_only=True)

    class Meta:
        model = Appointment
        fields = [
            'id',
            'patient_id',
            'patient_name',
            'doctor_id',
            'doctor_name',
            'appointment_date',
            'duration_minutes',
            'end_time',
            'status',
            'notes',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_doctor_name(self, obj):
        doctor = getattr(obj, 'doctor', None)
        return getattr(doctor, 'display_name', None) if doctor is not None else None


class AppointmentCreateSerializer(serializers.Serializer):
    """Shape check only; the scheduling service owns the business rules."""

    patient_id = serializers.IntegerField(min_value=1)
    doctor_id = serializers.IntegerField(min_value=1)
    appointment_date = serializers.DateTimeField()
    duration_minutes = serializers.IntegerField(min_value=1)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    idempotency_key = serializers.CharField(required=False, allow_blank=True, max_length=64)


class AppointmentUpdateSerializer(serializers.Serializer):
    doctor_id = serializers.IntegerField(min_value=1, required=False)
    appointment_date = serializers.DateTimeField(required=False)
    duration_minutes = serializers.IntegerField(min_value=1, required=False)
    status = serializers.ChoiceField(choices=Appointment.STATUS_CHOICES, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('At least one field must be provided.')
        return attrs


class FreeSlotsQuerySerializer(serializers.Serializer):
    doctor_id = serializers.IntegerField(min_value=1)
    date = serializers.DateField()
    duration_minutes = serializers.IntegerField(min_value=1)
