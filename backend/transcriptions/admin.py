from django.contrib import admin

from .models import TranscriptionJob


@admin.register(TranscriptionJob)
class TranscriptionJobAdmin(admin.ModelAdmin):
    """Status and funding are changed through the job actions, never edited here."""

    list_display = (
        "id",
        "user",
        "mode",
        "status",
        "funding_source",
        "reservation_state",
        "estimated_minutes",
        "credits_used",
        "attempts",
        "created_at",
    )
    list_filter = ("mode", "status", "funding_source", "reservation_state", "failure_kind")
    search_fields = ("id", "user__username", "user__email", "filename", "speechmatics_job_id")
    raw_id_fields = ("user",)
    date_hierarchy = "created_at"
    readonly_fields = (
        "status",
        "funding_source",
        "credits_used",
        "minutes_from_subscription",
        "minutes_reserved",
        "reservation_state",
        "speechmatics_job_id",
        "callback_url",
        "failure_kind",
        "technical_error",
        "attempts",
        "created_at",
        "updated_at",
        "processing_started_at",
        "dispatched_at",
        "completed_at",
    )

    def has_delete_permission(self, request, obj=None):
        return False
