import uuid

from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="TranscriptionJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("filename", models.CharField(help_text="Stored object name of the uploaded media.", max_length=512)),
                ("original_filename", models.CharField(blank=True, max_length=512)),
                ("download_url", models.URLField(help_text="Location the worker fetches the media from.", max_length=2048)),
                ("mode", models.CharField(choices=[("ai", "AI"), ("hybrid", "Hybrid"), ("human", "Human")], max_length=16)),
                ("status", models.CharField(choices=[("created", "Created"), ("reserving", "Reserving"), ("processing", "Processing"), ("awaiting-callback", "Awaiting callback"), ("pending-review", "Pending review"), ("pending-transcription", "Pending transcription"), ("complete", "Complete"), ("failed", "Failed"), ("cancelled", "Cancelled")], db_index=True, default="created", max_length=32)),
                ("duration_seconds", models.FloatField(default=0, help_text="Media duration; 0 when unknown.")),
                ("estimated_minutes", models.PositiveIntegerField(default=0, help_text="Minutes billed at reservation time.")),
                ("domain", models.CharField(choices=[("general", "General"), ("medical", "Medical"), ("legal", "Legal")], default="general", max_length=16)),
                ("language", models.CharField(default="en", max_length=16)),
                ("operating_point", models.CharField(choices=[("standard", "Standard"), ("enhanced", "Enhanced")], default="enhanced", max_length=16)),
                ("mode_options", models.JSONField(blank=True, default=dict)),
                ("funding_source", models.CharField(blank=True, choices=[("subscription", "Subscription"), ("credits", "Credits"), ("insufficient", "Insufficient")], max_length=16)),
                ("credits_used", models.PositiveIntegerField(default=0)),
                ("minutes_from_subscription", models.PositiveIntegerField(default=0)),
                ("minutes_reserved", models.PositiveIntegerField(default=0, help_text="Subscription minutes held for this job and returned on release.")),
                ("reservation_state", models.CharField(choices=[("none", "None"), ("held", "Held"), ("confirmed", "Confirmed"), ("released", "Released")], default="none", max_length=16)),
                ("speechmatics_job_id", models.CharField(blank=True, db_index=True, max_length=128)),
                ("callback_url", models.URLField(blank=True, max_length=2048)),
                ("transcript", models.TextField(blank=True)),
                ("timestamped_transcript", models.JSONField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, help_text="Message shown to the user.")),
                ("technical_error", models.TextField(blank=True)),
                ("failure_kind", models.CharField(blank=True, choices=[("", "None"), ("provider", "Provider error"), ("quota", "Quota exceeded"), ("enhanced_quota", "Enhanced model quota exceeded"), ("download", "Download failed"), ("funding", "Funding rejected"), ("cancelled", "Cancelled"), ("timeout", "Timed out"), ("rejected", "Rejected")], default="", max_length=32)),
                ("attempts", models.PositiveIntegerField(default=1)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("processing_started_at", models.DateTimeField(blank=True, null=True)),
                (
                    "dispatched_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Set when a worker claims the attempt for submission to the provider.",
                        null=True,
                    ),
                ),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("user", models.ForeignKey(on_delete=models.deletion.CASCADE, related_name="transcription_jobs", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "transcription_job",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "created_at"], name="transcription_user_created_idx"),
                    models.Index(fields=["status", "updated_at"], name="transcription_status_upd_idx"),
                ],
            },
        ),
    ]
