"""Job status transitions and the reconciliation that rides on them.

Every status change goes through ``transition``. It locks the job row, checks
the move against ``TRANSITIONS`` and, in the same database transaction,
confirms or releases the job's reservation. ``reservation_state`` only ever
moves ``held -> confirmed`` or ``held -> released``, so a reservation is
reconciled exactly once per attempt.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from django.db import transaction
from django.utils import timezone

from billing import plans
from billing.observability.logging import log_billing_event
from billing.observability.metrics import JOB_TRANSITION_COUNT
from billing.services import confirm_usage, refund_job_credits, release_reservation
from billing.services.ledger import ReconciliationError
from billing.services.reservations import ReservationResult
from transcriptions.models import TranscriptionJob

logger = logging.getLogger(__name__)

Status = TranscriptionJob.Status
ReservationState = TranscriptionJob.ReservationState

TRANSITIONS = {
    Status.CREATED: {Status.RESERVING, Status.CANCELLED},
    Status.RESERVING: {Status.PROCESSING, Status.PENDING_TRANSCRIPTION, Status.FAILED, Status.CANCELLED},
    Status.PROCESSING: {
        Status.AWAITING_CALLBACK,
        Status.COMPLETE,
        Status.PENDING_REVIEW,
        Status.FAILED,
        Status.CANCELLED,
    },
    Status.AWAITING_CALLBACK: {Status.COMPLETE, Status.PENDING_REVIEW, Status.FAILED, Status.CANCELLED},
    Status.PENDING_REVIEW: {Status.COMPLETE, Status.FAILED, Status.CANCELLED},
    Status.PENDING_TRANSCRIPTION: {Status.COMPLETE, Status.CANCELLED},
    Status.FAILED: {Status.RESERVING, Status.CANCELLED},
    Status.COMPLETE: set(),
    Status.CANCELLED: set(),
}

# Statuses a job may only enter in a given mode.
MODE_RESTRICTED = {
    Status.PROCESSING: {plans.AI, plans.HYBRID},
    Status.AWAITING_CALLBACK: {plans.AI, plans.HYBRID},
    Status.PENDING_REVIEW: {plans.HYBRID},
    Status.PENDING_TRANSCRIPTION: {plans.HUMAN},
}

ACTIVE_STATUSES = (Status.PROCESSING, Status.AWAITING_CALLBACK)


class InvalidTransition(Exception):
    """Raised when a job is asked to move to a status it cannot reach."""

    def __init__(self, job_id, from_status: str, to_status: str, reason: str = ""):
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        message = f"Job {job_id} cannot move from {from_status} to {to_status}"
        super().__init__(f"{message}: {reason}" if reason else message)


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, set())


def transition(
    job: TranscriptionJob,
    to_status: str,
    *,
    reservation: Optional[ReservationResult] = None,
    refund: bool = False,
    expected_statuses: Optional[Iterable[str]] = None,
    **fields,
) -> TranscriptionJob:
    """Move ``job`` to ``to_status`` and apply the billing side effects.

    ``fields`` are written onto the job before the side effects run, so a
    provider-reported ``duration_seconds`` is what gets confirmed.
    With ``expected_statuses`` the locked row must still be in one of them,
    otherwise ``InvalidTransition`` is raised and nothing changes.
    Returns the refreshed job instance.
    """
    with transaction.atomic():
        locked = TranscriptionJob.objects.select_for_update().get(pk=job.pk)
        from_status = locked.status

        if expected_statuses is not None and from_status not in expected_statuses:
            raise InvalidTransition(locked.pk, from_status, to_status, "job has moved on")
        if not can_transition(from_status, to_status):
            raise InvalidTransition(locked.pk, from_status, to_status)
        allowed_modes = MODE_RESTRICTED.get(to_status)
        if allowed_modes and locked.mode not in allowed_modes:
            raise InvalidTransition(locked.pk, from_status, to_status, f"not available for {locked.mode} jobs")

        for name, value in fields.items():
            setattr(locked, name, value)

        _apply_effects(locked, from_status, to_status, reservation=reservation, refund=refund)

        now = timezone.now()
        locked.status = to_status
        if to_status == Status.PROCESSING:
            locked.processing_started_at = now
        if to_status in (Status.COMPLETE, Status.FAILED, Status.CANCELLED):
            locked.completed_at = now
        locked.save()

    JOB_TRANSITION_COUNT.labels(from_status=from_status, to_status=to_status).inc()
    logger.info("Job %s: %s -> %s", locked.pk, from_status, to_status)
    return locked


def _apply_effects(
    job: TranscriptionJob,
    from_status: str,
    to_status: str,
    *,
    reservation: Optional[ReservationResult],
    refund: bool,
) -> None:
    if to_status == Status.RESERVING:
        if from_status == Status.FAILED:
            _reset_for_retry(job)
        return

    if from_status == Status.RESERVING and to_status in (Status.PROCESSING, Status.PENDING_TRANSCRIPTION):
        _hold_reservation(job, reservation)
        return

    if to_status == Status.COMPLETE:
        confirm_reservation(job)
        return

    if to_status == Status.FAILED:
        if job.reservation_state == ReservationState.HELD:
            release_job_reservation(job)
        if refund:
            refund_job(job)
        return

    if to_status == Status.CANCELLED:
        if job.reservation_state == ReservationState.HELD:
            release_job_reservation(job)
        job.failure_kind = TranscriptionJob.FailureKind.CANCELLED
        if refund:
            refund_job(job)


def _hold_reservation(job: TranscriptionJob, reservation: Optional[ReservationResult]) -> None:
    if reservation is None or not reservation.success:
        raise ValueError("A successful reservation is required to start a job.")
    if job.reservation_state == ReservationState.HELD:
        raise ReconciliationError(f"Job {job.pk} already holds a reservation.")
    job.funding_source = reservation.source
    job.credits_used = reservation.credits_used
    job.minutes_from_subscription = reservation.minutes_from_subscription
    job.minutes_reserved = reservation.minutes_reserved
    job.reservation_state = ReservationState.HELD


def _reset_for_retry(job: TranscriptionJob) -> None:
    if job.reservation_state == ReservationState.HELD:
        raise ReconciliationError(f"Job {job.pk} still holds a reservation and cannot be retried.")
    job.attempts += 1
    job.reservation_state = ReservationState.NONE
    job.funding_source = ""
    job.credits_used = 0
    job.minutes_from_subscription = 0
    job.minutes_reserved = 0
    job.speechmatics_job_id = ""
    job.dispatched_at = None
    job.callback_url = ""
    job.failure_kind = TranscriptionJob.FailureKind.NONE
    job.error_message = ""
    job.technical_error = ""
    job.completed_at = None


def confirm_reservation(job: TranscriptionJob) -> None:
    """Turn the job's held reservation into recorded usage."""
    if job.reservation_state != ReservationState.HELD:
        raise ReconciliationError(f"Reservation for job {job.pk} is {job.reservation_state}; cannot confirm.")
    confirm_usage(
        job.user_id,
        job.pk,
        job.mode,
        job.billable_minutes,
        job.minutes_reserved,
        credits_used=job.credits_used,
        metadata={"attempt": job.attempts, "estimated_minutes": job.estimated_minutes},
    )
    job.reservation_state = ReservationState.CONFIRMED


def release_job_reservation(job: TranscriptionJob) -> None:
    """Give the job's held subscription minutes back to the account."""
    if job.reservation_state != ReservationState.HELD:
        raise ReconciliationError(f"Reservation for job {job.pk} is {job.reservation_state}; cannot release.")
    release_reservation(job.user_id, job.minutes_reserved, job_id=job.pk)
    job.reservation_state = ReservationState.RELEASED


def refund_job(job: TranscriptionJob) -> None:
    if job.credits_used <= 0:
        return
    result = refund_job_credits(
        job.user_id,
        job.pk,
        job.credits_used,
        reason=f"Refund for {job.mode} job {job.pk}",
        attempt=job.attempts,
    )
    log_billing_event(
        message="job.refunded",
        user_id=job.user_id,
        job_id=job.pk,
        extra={"amount": job.credits_used, "attempt": job.attempts, "created": result.created},
    )
