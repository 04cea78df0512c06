from decimal import Decimal

from django.db import migrations, models


class Migration(migrations.Migration):

	dependencies = [
		("treatments", "0001_initial"),
	]

	operations = [
		migrations.AddField(
			model_name="treatment",
			name="status",
			field=models.CharField(
				choices=[("planned", "planned"), ("completed", "completed"), ("cancelled", "cancelled")],
				db_index=True,
				default="completed",
				max_length=16,
			),
		),
		migrations.AddField(
			model_name="treatment",
			name="planned_date",
			field=models.DateTimeField(blank=True, null=True),
		),
		migrations.AddField(
			model_name="treatment",
			name="completed_date",
			field=models.DateTimeField(blank=True, null=True),
		),
		migrations.AddField(
			model_name="treatment",
			name="payment_status",
			field=models.CharField(
				choices=[("pending", "pending"), ("partial", "partial"), ("paid", "paid")],
				db_index=True,
				default="pending",
				max_length=16,
			),
		),
		migrations.AddField(
			model_name="treatment",
			name="payment_amount",
			field=models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12),
		),
		migrations.AddField(
			model_name="treatment",
			name="payment_note",
			field=models.TextField(blank=True, default=""),
		),
		migrations.AddConstraint(
			model_name="treatment",
			constraint=models.CheckConstraint(
				condition=models.Q(("payment_amount__gte", 0), ("payment_amount__lte", models.F("cost"))),
				name="treatment_payment_within_cost",
			),
		),
	]
