import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

	initial = True

	dependencies = [
		migrations.swappable_dependency(settings.AUTH_USER_MODEL),
	]

	operations = [
		migrations.CreateModel(
			name="Patient",
			fields=[
				("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
				("name", models.CharField(max_length=200)),
				("phone", models.CharField(db_index=True, max_length=10)),
				("anamnez", models.TextField(blank=True, default="")),
				(
					"assignment_type",
					models.CharField(
						blank=True,
						choices=[("queue", "queue"), ("manual", "manual")],
						max_length=10,
						null=True,
					),
				),
				("assignment_date", models.DateTimeField(blank=True, null=True)),
				("created_at", models.DateTimeField(auto_now_add=True)),
				("updated_at", models.DateTimeField(auto_now=True)),
				("deleted_at", models.DateTimeField(blank=True, db_index=True, null=True)),
				(
					"assigned_doctor",
					models.ForeignKey(
						blank=True,
						null=True,
						on_delete=django.db.models.deletion.PROTECT,
						related_name="patients",
						to=settings.AUTH_USER_MODEL,
					),
				),
			],
			options={
				"verbose_name": "Patient",
				"verbose_name_plural": "Patients",
				"db_table": "patients",
				"ordering": ["name", "id"],
			},
		),
	]
