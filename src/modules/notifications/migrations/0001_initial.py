import django.db.models.deletion
import uuid6
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid6.uuid7,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("ORDER_CONFIRMED", "Order confirmed"),
                            ("ORDER_PREPARATION_STARTED", "Preparation started"),
                            ("ORDER_READY", "Order ready for pickup"),
                            ("ORDER_DELAYED", "Order delayed"),
                            ("ORDER_CANCELLED", "Order cancelled"),
                            ("ORDER_AUTO_CANCELLED", "Order auto-cancelled"),
                            ("PAYMENT_CONFIRMED", "Payment confirmed"),
                            ("PAYMENT_REMINDER", "Payment reminder"),
                            ("PAYMENT_DEADLINE_WARNING", "Payment deadline warning"),
                            ("PAYMENT_EXPIRED", "Payment expired"),
                            ("PAYMENT_REFUNDED", "Payment refunded"),
                            ("PICKUP_REMINDER_H1", "Pickup reminder (day before)"),
                            ("PICKUP_REMINDER_TODAY", "Pickup reminder (today)"),
                            ("PICKUP_COMPLETED", "Pickup completed"),
                            ("OPERATIONAL_EXCEPTION", "Operational exception"),
                        ],
                        max_length=40,
                    ),
                ),
                ("title", models.CharField(max_length=200)),
                ("message", models.TextField()),
                ("data", models.JSONField(blank=True, default=dict)),
                ("order_id", models.UUIDField(blank=True, null=True)),
                (
                    "dedup_key",
                    models.CharField(
                        blank=True, default=None, max_length=120, null=True
                    ),
                ),
                ("day_key", models.DateField(blank=True, default=None, null=True)),
                ("is_read", models.BooleanField(default=False)),
                (
                    "read_at",
                    models.DateTimeField(blank=True, default=None, null=True),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "notifications",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["user", "-created_at"], name="notif_user_created_idx"
                    ),
                    models.Index(
                        fields=["order_id", "type"], name="notif_order_type_idx"
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("dedup_key__isnull", False)),
                        fields=("user", "dedup_key"),
                        name="notif_user_dedup_key_uniq",
                    ),
                ],
            },
        ),
    ]
