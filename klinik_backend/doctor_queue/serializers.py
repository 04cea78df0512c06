from rest_framework import serializers

from klinik_backend.doctor_queue.models import DoctorQueueEntry


class DoctorQueueEntrySerializer(serializers.ModelSerializer):
    doctor_name = serializers.CharField(source='doctor.display_name', read_only=True)

    class Meta:
        model = DoctorQueueEntry
        fields = [
            'doctor_id',
            'doctor_name',
            'position',
            'active',
            'activated_at',
            'last_assigned_at',
            'assignment_count',
        ]
        read_only_fields = fields


class AssignNextSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(min_value=1)
