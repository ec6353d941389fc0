import uuid6
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AuditLogEntry",
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
                ("actor_id", models.CharField(max_length=64)),
                ("action", models.CharField(max_length=64)),
                ("resource", models.CharField(max_length=64)),
                (
                    "resource_id",
                    models.CharField(blank=True, default="", max_length=64),
                ),
                ("details", models.JSONField(blank=True, default=dict)),
                (
                    "correlation_id",
                    models.CharField(blank=True, default="", max_length=64),
                ),
            ],
            options={
                "db_table": "audit_log_entries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["actor_id"], name="audit_actor_idx"),
                    models.Index(fields=["action"], name="audit_action_idx"),
                    models.Index(
                        fields=["resource", "resource_id"], name="audit_resource_idx"
                    ),
                    models.Index(fields=["-created_at"], name="audit_created_idx"),
                ],
            },
        ),
    ]
