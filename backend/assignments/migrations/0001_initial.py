from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AssignmentAttemptRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("attempt_id", models.CharField(db_index=True, max_length=64)),
                ("order_id", models.CharField(db_index=True, max_length=64)),
                ("rider_id", models.CharField(db_index=True, max_length=64)),
                ("cycle_id", models.CharField(max_length=64)),
                ("offered_at", models.DateTimeField(db_index=True)),
                (
                    "outcome",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("accepted", "Accepted"),
                            ("rejected", "Rejected"),
                            ("timed_out", "Timed out"),
                            ("superseded", "Superseded"),
                        ],
                        max_length=20,
                        null=True,
                    ),
                ),
                ("responded_at", models.DateTimeField(blank=True, null=True)),
                ("recorded_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "assignment_attempts",
                "ordering": ["id"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="CycleOutcomeRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("cycle_id", models.CharField(max_length=64, unique=True)),
                ("order_id", models.CharField(db_index=True, max_length=64)),
                (
                    "state",
                    models.CharField(
                        choices=[
                            ("accepted", "Accepted"),
                            ("exhausted", "Exhausted"),
                            ("cancelled", "Cancelled"),
                        ],
                        max_length=20,
                    ),
                ),
                ("started_at", models.DateTimeField()),
                ("finished_at", models.DateTimeField(db_index=True)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("assigned_rider_id", models.CharField(blank=True, max_length=64, null=True)),
                ("end_reason", models.CharField(blank=True, default="", max_length=255)),
            ],
            options={
                "db_table": "dispatch_cycle_outcomes",
                "ordering": ["id"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="AssignmentEventRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_id", models.CharField(max_length=64, unique=True)),
                ("order_id", models.CharField(db_index=True, max_length=64)),
                ("rider_id", models.CharField(db_index=True, max_length=64)),
                (
                    "assignment_type",
                    models.CharField(choices=[("automatic", "Automatic"), ("manual", "Manual")], max_length=20),
                ),
                ("assigned_at", models.DateTimeField(db_index=True)),
                ("operator_id", models.CharField(blank=True, max_length=64, null=True)),
                ("score", models.FloatField(blank=True, null=True)),
            ],
            options={
                "db_table": "assignment_events",
                "ordering": ["id"],
                "abstract": False,
            },
        ),
    ]
