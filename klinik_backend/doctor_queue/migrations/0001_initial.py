import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

	initial = True

	dependencies = [
		migrations.swappable_dependency(settings.AUTH_USER_MODEL),
	]

	operations = [
		migrations.CreateModel(
			name="DoctorQueueEntry",
			fields=[
				(
					"doctor",
					models.OneToOneField(
						on_delete=django.db.models.deletion.CASCADE,
						primary_key=True,
						related_name="queue_entry",
						serialize=False,
						to=settings.AUTH_USER_MODEL,
					),
				),
				("position", models.PositiveIntegerField(blank=True, null=True)),
				("active", models.BooleanField(default=True)),
				("activated_at", models.DateTimeField(default=django.utils.timezone.now)),
				("last_assigned_at", models.DateTimeField(blank=True, null=True)),
				("assignment_count", models.PositiveIntegerField(default=0)),
			],
			options={
				"verbose_name": "Doctor Queue Entry",
				"verbose_name_plural": "Doctor Queue",
				"db_table": "doctor_queue",
				"ordering": ["position", "doctor_id"],
				"constraints": [
					models.UniqueConstraint(
						condition=models.Q(("active", True)),
						fields=("position",),
						name="uniq_active_queue_position",
					),
				],
			},
		),
	]
