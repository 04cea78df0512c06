import django.db.models.deletion
import django.utils.timezone
from decimal import Decimal

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
			name="Treatment",
			fields=[
				("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
				("tooth_no", models.PositiveSmallIntegerField(blank=True, null=True)),
				("procedure", models.CharField(max_length=200)),
				("cost", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
				("notes", models.TextField(blank=True, default="")),
				("locked", models.BooleanField(default=False)),
				("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
				("updated_at", models.DateTimeField(auto_now=True)),
				("deleted_at", models.DateTimeField(blank=True, null=True)),
				(
					"doctor",
					models.ForeignKey(
						on_delete=django.db.models.deletion.PROTECT,
						related_name="treatments",
						to=settings.AUTH_USER_MODEL,
					),
				),
				(
					"patient",
					models.ForeignKey(
						on_delete=django.db.models.deletion.PROTECT,
						related_name="treatments",
						to="patients.patient",
					),
				),
			],
			options={
				"db_table": "treatments",
				"ordering": ["-created_at", "-id"],
				"constraints": [
					models.CheckConstraint(
						condition=models.Q(("cost__gte", 0)),
						name="treatment_cost_non_negative",
					),
				],
			},
		),
	]
