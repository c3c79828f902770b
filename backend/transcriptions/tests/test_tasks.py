import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from transcriptions.models import TranscriptionJob
from transcriptions.services import jobs
from transcriptions.tasks import process_transcription_job, sweep_stuck_transcription_jobs


@pytest.mark.django_db
def test_process_task_reports_missing_job():
    result = process_transcription_job.apply(args=[str(uuid.uuid4())]).get()

    assert result["status"] == "error"


@pytest.mark.django_db
def test_process_task_runs_pipeline(hybrid_subscriber, make_job, fake_provider):
    job = make_job("ai")

    with patch("transcriptions.services.dispatcher.SpeechmaticsClient", return_value=fake_provider):
        result = process_transcription_job.apply(args=[str(job.pk)]).get()

    assert result == {"status": TranscriptionJob.Status.COMPLETE, "job_id": str(job.pk)}


@pytest.mark.django_db
def test_sweep_task(hybrid_subscriber, make_job, fake_provider):
    job = jobs.process_job(make_job("ai", duration_seconds=900).pk, client=fake_provider)
    TranscriptionJob.objects.filter(pk=job.pk).update(updated_at=timezone.now() - timedelta(hours=12))

    result = sweep_stuck_transcription_jobs()

    assert result == {"swept": 1, "job_ids": [str(job.pk)]}
    assert TranscriptionJob.objects.get(pk=job.pk).failure_kind == "timeout"
