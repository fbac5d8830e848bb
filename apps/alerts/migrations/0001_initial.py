import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Site",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(help_text="Display name of the site.", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="SiteAlert",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_date", models.DateTimeField(db_index=True, help_text="When the fire was detected.")),
                ("latitude", models.FloatField(blank=True, null=True)),
                ("longitude", models.FloatField(blank=True, null=True)),
                (
                    "detected_by",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Detection source (e.g. 'MODIS', 'VIIRS', 'GOES-16').",
                        max_length=100,
                    ),
                ),
                ("confidence", models.CharField(blank=True, default="", max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "site",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="site_alerts",
                        to="alerts.site",
                    ),
                ),
            ],
            options={
                "ordering": ["event_date"],
            },
        ),
        migrations.CreateModel(
            name="SiteIncident",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                (
                    "is_processed",
                    models.BooleanField(
                        default=False,
                        help_text="Set once the notification for the current boundary was recorded.",
                    ),
                ),
                ("started_at", models.DateTimeField(help_text="Event date of the first alert.")),
                (
                    "ended_at",
                    models.DateTimeField(
                        blank=True, help_text="Event date of the last alert (set on closing).", null=True
                    ),
                ),
                ("start_notification_id", models.CharField(blank=True, max_length=64, null=True)),
                ("end_notification_id", models.CharField(blank=True, max_length=64, null=True)),
                (
                    "review_status",
                    models.CharField(
                        choices=[("to_review", "To review"), ("in_review", "In review"), ("reviewed", "Reviewed")],
                        db_index=True,
                        default="to_review",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "site",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="incidents",
                        to="alerts.site",
                    ),
                ),
                (
                    "start_site_alert",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="alerts.sitealert",
                    ),
                ),
                (
                    "end_site_alert",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="alerts.sitealert",
                    ),
                ),
                (
                    "latest_site_alert",
                    models.ForeignKey(
                        blank=True,
                        help_text="Most recent alert linked to this incident.",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="alerts.sitealert",
                    ),
                ),
            ],
            options={
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(fields=["site", "is_active"], name="alerts_incident_site_active"),
                    models.Index(fields=["started_at"], name="alerts_incident_started"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_active", True)),
                        fields=("site",),
                        name="alerts_one_open_incident_per_site",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("ended_at__isnull", True),
                            ("started_at__lte", models.F("ended_at")),
                            _connector="OR",
                        ),
                        name="alerts_incident_started_before_ended",
                    ),
                ],
            },
        ),
        migrations.AddField(
            model_name="sitealert",
            name="site_incident",
            field=models.ForeignKey(
                blank=True,
                help_text="Incident this alert belongs to (null until linked).",
                null=True,
                on_delete=django.db.models.deletion.PROTECT,
                related_name="site_alerts",
                to="alerts.siteincident",
            ),
        ),
        migrations.AddIndex(
            model_name="sitealert",
            index=models.Index(fields=["site_incident", "event_date"], name="alerts_alert_incident_date"),
        ),
        migrations.AddIndex(
            model_name="sitealert",
            index=models.Index(fields=["site", "event_date"], name="alerts_alert_site_date"),
        ),
    ]
