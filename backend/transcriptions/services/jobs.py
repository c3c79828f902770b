"""Job orchestration: submission, processing, callbacks and admin actions."""
from __future__ import annotations

import hmac
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from billing import plans
from billing.observability.logging import log_billing_event
from billing.services import reserve
from transcriptions.exceptions import (
    CallbackAuthError,
    FundingRejected,
    ProviderQuotaExceeded,
    ProviderSubmissionFailed,
    TranscriptionProviderError,
)
from transcriptions.models import TranscriptionJob
from transcriptions.services.dispatcher import dispatch
from transcriptions.services.media import download_media
from transcriptions.services.speechmatics import (
    SpeechmaticsClient,
    SpeechmaticsError,
    TranscriptResult,
    build_result,
)
from transcriptions.state_machine import ACTIVE_STATUSES, InvalidTransition, transition

logger = logging.getLogger(__name__)

Status = TranscriptionJob.Status
FailureKind = TranscriptionJob.FailureKind

CALLBACK_PROCESSED = "processed"
CALLBACK_DUPLICATE = "duplicate"
CALLBACK_IGNORED = "ignored"

MAX_TECHNICAL_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class CallbackOutcome:
    status: str
    job: TranscriptionJob


def _initial_status(mode: str) -> str:
    return Status.PENDING_TRANSCRIPTION if mode == plans.HUMAN else Status.PROCESSING


def submit_job(user, data: Dict[str, Any]) -> TranscriptionJob:
    """Reserve funding and create the job in one transaction.

    On a funding failure ``FundingRejected`` is raised and nothing is
    persisted. ``data`` is the validated create payload; ``data["options"]``
    is the parsed mode options.
    """
    options = data["options"]
    mode = data["mode"]
    duration = data.get("duration_seconds") or 0
    estimated_minutes = plans.billable_minutes(duration)

    job = TranscriptionJob(
        id=uuid.uuid4(),
        user=user,
        filename=data["filename"],
        original_filename=data.get("original_filename") or data["filename"],
        download_url=data["download_url"],
        mode=mode,
        duration_seconds=duration,
        estimated_minutes=estimated_minutes,
        domain=getattr(options, "domain", TranscriptionJob.Domain.GENERAL),
        language=getattr(options, "language", "en"),
        operating_point=getattr(options, "operating_point", TranscriptionJob.OperatingPoint.ENHANCED),
        mode_options=options.to_dict(),
    )

    with transaction.atomic():
        job.save()
        job = transition(job, Status.RESERVING)
        result = reserve(user.pk, mode, estimated_minutes, job_id=job.pk)
        if not result.success:
            raise FundingRejected(result)
        job = transition(job, _initial_status(mode), reservation=result)

    log_billing_event(
        message="job.submitted",
        user_id=user.pk,
        job_id=job.pk,
        extra={"mode": mode, "estimated_minutes": estimated_minutes, "source": result.source},
    )
    return job


def process_job(
    job_id,
    *,
    language: Optional[str] = None,
    operating_point: Optional[str] = None,
    client: Optional[SpeechmaticsClient] = None,
) -> TranscriptionJob:
    """Download the media and hand the job to the provider.

    The attempt is claimed under the row lock first; jobs that are not
    ``processing`` or were already claimed are returned unchanged, so a
    redelivered task or a second ``/process/`` call never submits twice.
    """
    job, claimed = _claim_for_dispatch(job_id, language=language, operating_point=operating_point)
    if not claimed:
        return job

    try:
        try:
            media = download_media(job.download_url)
            outcome = dispatch(job, media, client=client)
        except TranscriptionProviderError as exc:
            return fail_job(job, exc, expected_statuses=(Status.PROCESSING,))

        if outcome.is_async:
            return transition(job, Status.AWAITING_CALLBACK, expected_statuses=(Status.PROCESSING,))
        return finalize_transcript(job, outcome.result, expected_statuses=(Status.PROCESSING,))
    except InvalidTransition:
        job.refresh_from_db()
        logger.info("Job %s moved to %s while it was being dispatched.", job.pk, job.status)
        return job


def _claim_for_dispatch(
    job_id,
    *,
    language: Optional[str] = None,
    operating_point: Optional[str] = None,
) -> Tuple[TranscriptionJob, bool]:
    """Stamp ``dispatched_at`` on a processing job that no worker has claimed yet."""
    with transaction.atomic():
        job = TranscriptionJob.objects.select_for_update().get(pk=job_id)
        if job.status != Status.PROCESSING:
            logger.info("Job %s is %s; nothing to process.", job.pk, job.status)
            return job, False
        if job.dispatched_at is not None:
            logger.info("Job %s attempt %s was already dispatched at %s.", job.pk, job.attempts, job.dispatched_at)
            return job, False

        updates = ["dispatched_at", "updated_at"]
        if language and language != job.language:
            job.language = language
            updates.append("language")
        if operating_point and operating_point != job.operating_point:
            job.operating_point = operating_point
            updates.append("operating_point")
        job.dispatched_at = timezone.now()
        job.save(update_fields=updates)
    return job, True


def finalize_transcript(
    job: TranscriptionJob,
    result: TranscriptResult,
    *,
    expected_statuses=ACTIVE_STATUSES,
) -> TranscriptionJob:
    """Store the transcript and move to ``complete`` (ai) or ``pending-review`` (hybrid)."""
    fields = {"transcript": result.text, "timestamped_transcript": result.segments}
    if result.duration_seconds:
        fields["duration_seconds"] = result.duration_seconds
    target = Status.PENDING_REVIEW if job.mode == plans.HYBRID else Status.COMPLETE
    return transition(job, target, expected_statuses=expected_statuses, **fields)


def fail_job(
    job: TranscriptionJob,
    exc: TranscriptionProviderError,
    *,
    failure_kind: Optional[str] = None,
    expected_statuses=ACTIVE_STATUSES,
) -> TranscriptionJob:
    fields = {
        "error_message": exc.user_message,
        "technical_error": (exc.technical_detail or str(exc))[:MAX_TECHNICAL_ERROR_LENGTH],
        "failure_kind": failure_kind or exc.failure_kind,
    }
    if isinstance(exc, ProviderQuotaExceeded) and exc.enhanced:
        # The next attempt runs on the standard model.
        fields["operating_point"] = TranscriptionJob.OperatingPoint.STANDARD
    logger.warning("Job %s failed (%s): %s", job.pk, fields["failure_kind"], fields["technical_error"])
    return transition(job, Status.FAILED, expected_statuses=expected_statuses, **fields)


def verify_callback_token(token: Optional[str]) -> None:
    expected = getattr(settings, "SPEECHMATICS_WEBHOOK_TOKEN", "")
    if not expected or not token or not hmac.compare_digest(str(token).encode(), str(expected).encode()):
        raise CallbackAuthError("Invalid callback token.")


def handle_callback(
    token: Optional[str],
    job_id,
    payload: Dict[str, Any],
    *,
    client: Optional[SpeechmaticsClient] = None,
) -> CallbackOutcome:
    """Apply a provider notification to the job it belongs to.

    Notifications for jobs that already left ``processing``/``awaiting-callback``
    are acknowledged without touching billing again.
    """
    verify_callback_token(token)
    job = TranscriptionJob.objects.get(pk=job_id)

    provider_job = payload.get("job") or payload.get("jobinfo") or {}
    provider_job_id = provider_job.get("id") or payload.get("id")
    if job.speechmatics_job_id and provider_job_id and provider_job_id != job.speechmatics_job_id:
        logger.warning(
            "Callback for job %s names provider job %s, expected %s; ignoring.",
            job.pk,
            provider_job_id,
            job.speechmatics_job_id,
        )
        return CallbackOutcome(CALLBACK_IGNORED, job)

    if job.status not in ACTIVE_STATUSES:
        logger.info("Duplicate callback for job %s in status %s acknowledged.", job.pk, job.status)
        return CallbackOutcome(CALLBACK_DUPLICATE, job)

    has_results = bool(payload.get("results"))
    provider_status = "done" if has_results else provider_job.get("status")

    try:
        try:
            if provider_status is None and job.speechmatics_job_id:
                provider_status = (client or SpeechmaticsClient()).get_job_status(job.speechmatics_job_id).get("status")

            if provider_status == "done":
                if not has_results:
                    payload = (client or SpeechmaticsClient()).get_transcript(job.speechmatics_job_id)
                job = finalize_transcript(job, build_result(payload, provider_job_id=job.speechmatics_job_id))
                return CallbackOutcome(CALLBACK_PROCESSED, job)

            if provider_status == "rejected":
                job = fail_job(
                    job,
                    ProviderSubmissionFailed(technical_detail=f"Speechmatics rejected job {job.speechmatics_job_id}."),
                    failure_kind=FailureKind.REJECTED,
                )
                return CallbackOutcome(CALLBACK_PROCESSED, job)
        except SpeechmaticsError as exc:
            job = fail_job(job, ProviderSubmissionFailed(technical_detail=str(exc)))
            return CallbackOutcome(CALLBACK_PROCESSED, job)
    except InvalidTransition:
        job.refresh_from_db()
        logger.info("Concurrent callback already finalised job %s.", job.pk)
        return CallbackOutcome(CALLBACK_DUPLICATE, job)

    logger.info("Callback for job %s with provider status %s; waiting.", job.pk, provider_status)
    return CallbackOutcome(CALLBACK_IGNORED, job)


def _require_status(job: TranscriptionJob, expected: str, to_status: str) -> None:
    if job.status != expected:
        raise InvalidTransition(job.pk, job.status, to_status, f"job must be {expected}")


def approve_review(job_id, *, transcript: Optional[str] = None, actor: Optional[str] = None) -> TranscriptionJob:
    job = TranscriptionJob.objects.get(pk=job_id)
    _require_status(job, Status.PENDING_REVIEW, Status.COMPLETE)
    fields = {"transcript": transcript} if transcript is not None else {}
    job = transition(job, Status.COMPLETE, **fields)
    log_billing_event(message="job.review_approved", user_id=job.user_id, job_id=job.pk, actor=actor)
    return job


def reject_review(
    job_id,
    *,
    refund: bool = False,
    reason: str = "",
    actor: Optional[str] = None,
) -> TranscriptionJob:
    job = TranscriptionJob.objects.get(pk=job_id)
    _require_status(job, Status.PENDING_REVIEW, Status.FAILED)
    job = transition(
        job,
        Status.FAILED,
        refund=refund,
        failure_kind=FailureKind.REJECTED,
        error_message=reason or "The transcript was rejected during review.",
    )
    log_billing_event(
        message="job.review_rejected",
        user_id=job.user_id,
        job_id=job.pk,
        actor=actor,
        extra={"refund": refund},
    )
    return job


def complete_human_job(
    job_id,
    transcript: str,
    *,
    timestamped_transcript: Optional[List[Dict[str, Any]]] = None,
    duration_seconds: Optional[float] = None,
    actor: Optional[str] = None,
) -> TranscriptionJob:
    job = TranscriptionJob.objects.get(pk=job_id)
    _require_status(job, Status.PENDING_TRANSCRIPTION, Status.COMPLETE)
    fields: Dict[str, Any] = {"transcript": transcript}
    if timestamped_transcript is not None:
        fields["timestamped_transcript"] = timestamped_transcript
    if duration_seconds:
        fields["duration_seconds"] = duration_seconds
    job = transition(job, Status.COMPLETE, **fields)
    log_billing_event(message="job.human_delivered", user_id=job.user_id, job_id=job.pk, actor=actor)
    return job


def cancel_job(job_id, *, refund: bool = False, reason: str = "", actor: Optional[str] = None) -> TranscriptionJob:
    job = TranscriptionJob.objects.get(pk=job_id)
    job = transition(job, Status.CANCELLED, refund=refund, error_message=reason or "Cancelled by an administrator.")
    log_billing_event(message="job.cancelled", user_id=job.user_id, job_id=job.pk, actor=actor, extra={"refund": refund})
    return job


def retry_job(job_id) -> TranscriptionJob:
    """Re-run a failed job with a fresh reservation.

    A funding failure leaves the job ``failed`` and raises ``FundingRejected``.
    """
    job = TranscriptionJob.objects.get(pk=job_id)
    with transaction.atomic():
        job = transition(job, Status.RESERVING)
        result = reserve(job.user_id, job.mode, job.estimated_minutes or job.billable_minutes, job_id=job.pk)
        if result.success:
            job = transition(job, _initial_status(job.mode), reservation=result)
        else:
            job = transition(
                job,
                Status.FAILED,
                failure_kind=FailureKind.FUNDING,
                error_message=result.message,
            )

    if not result.success:
        raise FundingRejected(result, job=job)
    log_billing_event(
        message="job.retried",
        user_id=job.user_id,
        job_id=job.pk,
        extra={"attempt": job.attempts, "source": result.source},
    )
    return job


def _stuck_job_ids(cutoff) -> List[uuid.UUID]:
    return list(
        TranscriptionJob.objects.filter(
            status__in=ACTIVE_STATUSES,
            updated_at__lt=cutoff,
        ).values_list("pk", flat=True)
    )


def sweep_stuck_jobs(max_age: Optional[timedelta] = None) -> List[str]:
    """Fail jobs stuck in processing/awaiting-callback, releasing their reservations.

    Each candidate is re-read under its row lock; a job that progressed or was
    touched after the cutoff is left alone.
    """
    if max_age is None:
        max_age = timedelta(hours=getattr(settings, "TRANSCRIPTION_STUCK_JOB_MAX_AGE_HOURS", 6))
    cutoff = timezone.now() - max_age

    swept: List[str] = []
    for job_id in _stuck_job_ids(cutoff):
        try:
            with transaction.atomic():
                job = (
                    TranscriptionJob.objects.select_for_update()
                    .filter(pk=job_id, status__in=ACTIVE_STATUSES, updated_at__lt=cutoff)
                    .first()
                )
                if job is None:
                    logger.info("Job %s progressed before it could be swept.", job_id)
                    continue
                transition(
                    job,
                    Status.FAILED,
                    expected_statuses=ACTIVE_STATUSES,
                    failure_kind=FailureKind.TIMEOUT,
                    error_message="Transcription timed out. Please try again.",
                    technical_error=f"No provider result within {max_age}.",
                )
        except InvalidTransition:
            logger.info("Job %s finished while being swept.", job_id)
            continue
        swept.append(str(job_id))

    if swept:
        logger.warning("Swept %d stuck transcription jobs.", len(swept))
    return swept
