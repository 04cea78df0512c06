import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

	initial = True

	dependencies = [
		migrations.swappable_dependency(settings.AUTH_USER_MODEL),
		("patients", "0001_initial"),
	]

	operations = [
		migrations.CreateModel(
			name="Appointment",
			fields=[
				("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
				("appointment_date", models.DateTimeField(db_index=True)),
				("duration_minutes", models.PositiveIntegerField()),
				(
					"status",
					models.CharField(
						choices=[
							("scheduled", "scheduled"),
							("confirmed", "confirmed"),
							("completed", "completed"),
							("cancelled", "cancelled"),
							("no_show", "no_show"),
						],
						default="scheduled",
						max_length=20,
					),
				),
				("notes", models.TextField(blank=True, default="")),
				("idempotency_key", models.CharField(blank=True, max_length=64, null=True, unique=True)),
				("created_at", models.DateTimeField(auto_now_add=True)),
				("updated_at", models.DateTimeField(auto_now=True)),
				(
					"created_by",
					models.ForeignKey(
						blank=True,
						null=True,
						on_delete=django.db.models.deletion.SET_NULL,
						related_name="created_appointments",
						to=settings.AUTH_USER_MODEL,
					),
				),
				(
					"doctor",
					models.ForeignKey(
						on_delete=django.db.models.deletion.PROTECT,
						related_name="appointments",
						to=settings.AUTH_USER_MODEL,
					),
				),
				(
					"patient",
					models.ForeignKey(
						on_delete=django.db.models.deletion.PROTECT,
						related_name="appointments",
						to="patients.patient",
					),
				),
			],
			options={
				"db_table": "appointments",
				"ordering": ["appointment_date", "id"],
				"indexes": [
					models.Index(fields=["doctor", "appointment_date"], name="appointment_doctor__3e7b1a_idx"),
					models.Index(fields=["patient", "appointment_date"], name="appointment_patient_8d2c4f_idx"),
				],
				"constraints": [
					models.UniqueConstraint(
						condition=models.Q(("status__in", ["scheduled", "confirmed"])),
						fields=("doctor", "appointment_date"),
						name="uniq_active_appointment_start_per_doctor",
					),
				],
			},
		),
	]
