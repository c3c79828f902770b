"""Transcription job record and its lifecycle fields."""
import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from billing import plans
from billing.models import TranscriptionMode


class TranscriptionJob(models.Model):
    """A single media file moving through reservation, processing and delivery.

    ``status`` is only changed through ``transcriptions.state_machine.transition``;
    ``reservation_state`` records whether the funding held for the job has been
    confirmed or released.
    """

    class Status(models.TextChoices):
        CREATED = "created", "Created"
        RESERVING = "reserving", "Reserving"
        PROCESSING = "processing", "Processing"
        AWAITING_CALLBACK = "awaiting-callback", "Awaiting callback"
        PENDING_REVIEW = "pending-review", "Pending review"
        PENDING_TRANSCRIPTION = "pending-transcription", "Pending transcription"
        COMPLETE = "complete", "Complete"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"

    class Domain(models.TextChoices):
        GENERAL = "general", "General"
        MEDICAL = "medical", "Medical"
        LEGAL = "legal", "Legal"

    class OperatingPoint(models.TextChoices):
        STANDARD = "standard", "Standard"
        ENHANCED = "enhanced", "Enhanced"

    class FundingSource(models.TextChoices):
        SUBSCRIPTION = "subscription", "Subscription"
        CREDITS = "credits", "Credits"
        INSUFFICIENT = "insufficient", "Insufficient"

    class ReservationState(models.TextChoices):
        NONE = "none", "None"
        HELD = "held", "Held"
        CONFIRMED = "confirmed", "Confirmed"
        RELEASED = "released", "Released"

    class FailureKind(models.TextChoices):
        NONE = "", "None"
        PROVIDER = "provider", "Provider error"
        QUOTA = "quota", "Quota exceeded"
        ENHANCED_QUOTA = "enhanced_quota", "Enhanced model quota exceeded"
        DOWNLOAD = "download", "Download failed"
        FUNDING = "funding", "Funding rejected"
        CANCELLED = "cancelled", "Cancelled"
        TIMEOUT = "timeout", "Timed out"
        REJECTED = "rejected", "Rejected"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="transcription_jobs",
    )
    filename = models.CharField(max_length=512, help_text="Stored object name of the uploaded media.")
    original_filename = models.CharField(max_length=512, blank=True)
    download_url = models.URLField(max_length=2048, help_text="Location the worker fetches the media from.")
    mode = models.CharField(max_length=16, choices=TranscriptionMode.choices)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.CREATED, db_index=True)
    duration_seconds = models.FloatField(default=0, help_text="Media duration; 0 when unknown.")
    estimated_minutes = models.PositiveIntegerField(default=0, help_text="Minutes billed at reservation time.")
    domain = models.CharField(max_length=16, choices=Domain.choices, default=Domain.GENERAL)
    language = models.CharField(max_length=16, default="en")
    operating_point = models.CharField(
        max_length=16,
        choices=OperatingPoint.choices,
        default=OperatingPoint.ENHANCED,
    )
    mode_options = models.JSONField(default=dict, blank=True)

    funding_source = models.CharField(max_length=16, choices=FundingSource.choices, blank=True)
    credits_used = models.PositiveIntegerField(default=0)
    minutes_from_subscription = models.PositiveIntegerField(default=0)
    minutes_reserved = models.PositiveIntegerField(
        default=0,
        help_text="Subscription minutes held for this job and returned on release.",
    )
    reservation_state = models.CharField(
        max_length=16,
        choices=ReservationState.choices,
        default=ReservationState.NONE,
    )

    speechmatics_job_id = models.CharField(max_length=128, blank=True, db_index=True)
    callback_url = models.URLField(max_length=2048, blank=True)
    transcript = models.TextField(blank=True)
    timestamped_transcript = models.JSONField(null=True, blank=True)

    error_message = models.TextField(blank=True, help_text="Message shown to the user.")
    technical_error = models.TextField(blank=True)
    failure_kind = models.CharField(max_length=32, choices=FailureKind.choices, blank=True, default="")
    attempts = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    processing_started_at = models.DateTimeField(null=True, blank=True)
    dispatched_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set when a worker claims the attempt for submission to the provider.",
    )
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "transcription_job"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "created_at"], name="transcription_user_created_idx"),
            models.Index(fields=["status", "updated_at"], name="transcription_status_upd_idx"),
        ]

    def __str__(self):
        return f"TranscriptionJob<{self.id}:{self.mode}:{self.status}>"

    def delete(self, *args, **kwargs):
        raise ValidationError("Transcription jobs are never deleted.")

    @property
    def billable_minutes(self) -> int:
        return plans.billable_minutes(self.duration_seconds)

    @property
    def is_terminal(self) -> bool:
        return self.status in (self.Status.COMPLETE, self.Status.CANCELLED)
