from rest_framework import serializers

from klinik_backend.treatments.models import Treatment


class TreatmentSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source='patient.name', read_only=True)
    doctor_name = serializers.CharField(source='doctor.display_name', read_only=True)
    outstanding = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Treatment
        fields = [
            'id',
            'patient_id',
            'patient_name',
            'doctor_id',
            'doctor_name',
            'tooth_no',
            'procedure',
            'cost',
            'notes',
            'status',
            'planned_date',
            'completed_date',
            'payment_status',
            'payment_amount',
            'payment_note',
            'outstanding',
            'locked',
            'created_at',
        ]
        read_only_fields = fields


class TreatmentCreateSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(min_value=1)
    doctor_id = serializers.IntegerField(min_value=1, required=False)
    tooth_no = serializers.IntegerField(required=False, allow_null=True)
    procedure = serializers.CharField(max_length=200)
    cost = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    status = serializers.ChoiceField(
        choices=[Treatment.STATUS_PLANNED, Treatment.STATUS_COMPLETED],
        required=False,
        default=Treatment.STATUS_COMPLETED,
    )
    planned_date = serializers.DateTimeField(required=False, allow_null=True)


class TreatmentUpdateSerializer(serializers.Serializer):
    cost = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class PaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    note = serializers.CharField(required=False, allow_blank=True, default='')


class TreatmentLockSerializer(serializers.Serializer):
    until = serializers.DateTimeField()


class IncomeSummarySerializer(serializers.Serializer):
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
    count = serializers.IntegerField()
    total = serializers.DecimalField(max_digits=14, decimal_places=2)
    collected = serializers.DecimalField(max_digits=14, decimal_places=2)
    outstanding = serializers.DecimalField(max_digits=14, decimal_places=2)
    treatments = TreatmentSerializer(many=True)


class TreatmentRemindersSerializer(serializers.Serializer):
    overdue = TreatmentSerializer(many=True)
    upcoming = TreatmentSerializer(many=True)
