from celery import shared_task
from django.db import OperationalError
import logging

from billing.services.ledger import LedgerConflict
from .models import TranscriptionJob
from .services.jobs import process_job, sweep_stuck_jobs

logger = logging.getLogger(__name__)


@shared_task(bind=True, queue="transcriptions", max_retries=3, default_retry_delay=60)
def process_transcription_job(self, job_id, language=None, operating_point=None):
    """
    Download media for a funded job and submit it to the provider.

    Args:
        job_id: ID of the TranscriptionJob
        language: optional language override
        operating_point: optional operating point override
    """
    try:
        job = process_job(job_id, language=language, operating_point=operating_point)
    except TranscriptionJob.DoesNotExist:
        logger.error(f"Transcription job {job_id} does not exist")
        return {"status": "error", "job_id": str(job_id), "message": "Job does not exist"}
    except (OperationalError, LedgerConflict) as exc:
        logger.warning(f"Transient error while processing job {job_id}: {exc}")
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))
        raise

    return {"status": job.status, "job_id": str(job.pk)}


@shared_task(queue="transcriptions")
def sweep_stuck_transcription_jobs():
    """Fail jobs that never heard back from the provider."""
    swept = sweep_stuck_jobs()
    return {"swept": len(swept), "job_ids": swept}
