"""Request and response serializers for transcription jobs."""
from __future__ import annotations

from rest_framework import serializers

from billing import plans
from transcriptions.models import TranscriptionJob
from transcriptions.payloads import (
    InvalidJobOptions,
    LANGUAGE_PATTERN,
    OPERATING_POINTS,
    parse_mode_options,
)

MAX_DURATION_SECONDS = 86400
MAX_FILENAME_LENGTH = 255


class TranscriptionJobCreateSerializer(serializers.Serializer):
    filename = serializers.CharField(max_length=MAX_FILENAME_LENGTH)
    original_filename = serializers.CharField(max_length=MAX_FILENAME_LENGTH, required=False, allow_blank=True)
    download_url = serializers.URLField(max_length=2048)
    mode = serializers.ChoiceField(choices=plans.MODES)
    duration_seconds = serializers.FloatField(
        required=False,
        default=0,
        min_value=0,
        max_value=MAX_DURATION_SECONDS,
    )
    options = serializers.DictField(required=False, default=dict)

    def validate(self, attrs):
        try:
            attrs["options"] = parse_mode_options(attrs["mode"], attrs.get("options"))
        except InvalidJobOptions as exc:
            raise serializers.ValidationError({"options": exc.errors})
        return attrs


class ProcessJobSerializer(serializers.Serializer):
    job_id = serializers.UUIDField()
    language = serializers.CharField(required=False, max_length=16)
    operating_point = serializers.ChoiceField(choices=OPERATING_POINTS, required=False)

    def validate_language(self, value):
        if not LANGUAGE_PATTERN.match(value):
            raise serializers.ValidationError("Invalid language code.")
        return value


class ReviewDecisionSerializer(serializers.Serializer):
    refund = serializers.BooleanField(required=False, default=False)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=1000, default="")
    transcript = serializers.CharField(required=False, allow_blank=False)


class HumanDeliverySerializer(serializers.Serializer):
    transcript = serializers.CharField()
    timestamped_transcript = serializers.ListField(child=serializers.DictField(), required=False)
    duration_seconds = serializers.FloatField(required=False, min_value=0, max_value=MAX_DURATION_SECONDS)


class TranscriptionJobSerializer(serializers.ModelSerializer):
    billable_minutes = serializers.IntegerField(read_only=True)

    class Meta:
        model = TranscriptionJob
        fields = (
            "id",
            "filename",
            "original_filename",
            "mode",
            "status",
            "duration_seconds",
            "estimated_minutes",
            "billable_minutes",
            "domain",
            "language",
            "operating_point",
            "mode_options",
            "funding_source",
            "credits_used",
            "minutes_from_subscription",
            "reservation_state",
            "transcript",
            "timestamped_transcript",
            "error_message",
            "failure_kind",
            "attempts",
            "created_at",
            "updated_at",
            "processing_started_at",
            "dispatched_at",
            "completed_at",
        )
        read_only_fields = fields
