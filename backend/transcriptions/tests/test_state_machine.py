import pytest
from django.core.exceptions import ValidationError

from billing.models import Account, CreditTransaction, UsageRecord
from billing.services.ledger import ReconciliationError
from transcriptions.models import TranscriptionJob
from transcriptions.services import jobs
from transcriptions.state_machine import (
    InvalidTransition,
    can_transition,
    confirm_reservation,
    release_job_reservation,
    transition,
)

Status = TranscriptionJob.Status


def test_transition_table():
    assert can_transition(Status.CREATED, Status.RESERVING)
    assert can_transition(Status.PROCESSING, Status.AWAITING_CALLBACK)
    assert can_transition(Status.PENDING_REVIEW, Status.COMPLETE)
    assert can_transition(Status.FAILED, Status.RESERVING)
    assert not can_transition(Status.COMPLETE, Status.PROCESSING)
    assert not can_transition(Status.CANCELLED, Status.RESERVING)
    assert not can_transition(Status.PENDING_TRANSCRIPTION, Status.FAILED)
    assert not can_transition(Status.CREATED, Status.PROCESSING)


@pytest.mark.django_db
def test_submitted_job_holds_reservation(user, hybrid_subscriber, make_job):
    job = make_job("ai", duration_seconds=120)

    assert job.status == Status.PROCESSING
    assert job.reservation_state == TranscriptionJob.ReservationState.HELD
    assert job.minutes_reserved == 2
    assert job.funding_source == "subscription"
    assert job.processing_started_at is not None
    assert Account.objects.get(user=user).minutes_reserved == 2


@pytest.mark.django_db
def test_terminal_jobs_cannot_move(hybrid_subscriber, make_job, fake_provider):
    job = jobs.process_job(make_job("ai").pk, client=fake_provider)
    assert job.status == Status.COMPLETE

    with pytest.raises(InvalidTransition):
        transition(job, Status.FAILED)
    with pytest.raises(InvalidTransition):
        transition(job, Status.CANCELLED)


@pytest.mark.django_db
def test_pending_review_is_hybrid_only(hybrid_subscriber, make_job):
    job = make_job("ai")

    with pytest.raises(InvalidTransition):
        transition(job, Status.PENDING_REVIEW)


@pytest.mark.django_db
def test_reconciliation_happens_once(user, hybrid_subscriber, make_job, fake_provider):
    job = jobs.process_job(make_job("ai").pk, client=fake_provider)

    assert job.reservation_state == TranscriptionJob.ReservationState.CONFIRMED
    with pytest.raises(ReconciliationError):
        confirm_reservation(job)
    with pytest.raises(ReconciliationError):
        release_job_reservation(job)
    assert UsageRecord.objects.filter(job_id=job.pk).count() == 1
    account = Account.objects.get(user=user)
    assert account.minutes_reserved == 0
    assert account.minutes_used_this_month == 2


@pytest.mark.django_db
@pytest.mark.parametrize("terminal", ["failed", "cancelled"])
def test_failure_and_cancel_release_exactly_once(user, hybrid_subscriber, make_job, terminal):
    job = make_job("ai", duration_seconds=600)
    assert Account.objects.get(user=user).minutes_reserved == 10

    job = transition(job, terminal)
    assert job.reservation_state == TranscriptionJob.ReservationState.RELEASED
    assert Account.objects.get(user=user).minutes_reserved == 0

    if terminal == "failed":
        job = transition(job, Status.CANCELLED)
        assert job.reservation_state == TranscriptionJob.ReservationState.RELEASED
    assert Account.objects.get(user=user).minutes_reserved == 0
    assert not UsageRecord.objects.filter(job_id=job.pk).exists()


@pytest.mark.django_db
def test_released_minutes_do_not_leak_into_other_jobs(user, hybrid_subscriber, make_job):
    first = make_job("ai", duration_seconds=600)
    second = make_job("ai", duration_seconds=300)

    transition(first, Status.FAILED)

    assert Account.objects.get(user=user).minutes_reserved == second.minutes_reserved == 5


@pytest.mark.django_db
def test_refund_is_a_distinct_transaction(user, account_state, make_job):
    account_state(credits=1000)
    job = make_job("ai", duration_seconds=180)
    assert job.credits_used == 300

    job = transition(job, Status.CANCELLED, refund=True)

    assert job.failure_kind == TranscriptionJob.FailureKind.CANCELLED
    assert Account.objects.get(user=user).credits == 1000
    types = CreditTransaction.objects.filter(job_id=job.pk).values_list("type", flat=True)
    assert sorted(types) == ["refund", "reservation_debit"]


@pytest.mark.django_db
def test_retry_takes_a_fresh_reservation(user, hybrid_subscriber, make_job):
    job = transition(make_job("ai", duration_seconds=240), Status.FAILED, failure_kind="provider")

    retried = jobs.retry_job(job.pk)

    assert retried.status == Status.PROCESSING
    assert retried.attempts == 2
    assert retried.reservation_state == TranscriptionJob.ReservationState.HELD
    assert retried.failure_kind == ""
    assert Account.objects.get(user=user).minutes_reserved == 4


@pytest.mark.django_db
def test_jobs_are_never_deleted(hybrid_subscriber, make_job):
    job = make_job("ai")

    with pytest.raises(ValidationError):
        job.delete()
    assert TranscriptionJob.objects.filter(pk=job.pk).exists()
