"""Send a funded job to the provider, synchronously or with a callback."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from django.conf import settings
from django.utils import timezone

from billing import plans
from billing.observability.metrics import PROVIDER_ERROR_COUNT, PROVIDER_SUBMIT_LATENCY
from transcriptions.exceptions import ProviderQuotaExceeded, ProviderSubmissionFailed
from transcriptions.models import TranscriptionJob
from transcriptions.payloads import load_mode_options
from transcriptions.services.speechmatics import (
    SpeechmaticsClient,
    SpeechmaticsError,
    SpeechmaticsQuotaError,
    TranscriptResult,
)

logger = logging.getLogger(__name__)

SYNC = "sync"
ASYNC = "async"

CALLBACK_PATH = "/api/transcriptions/callback/"

DOMAIN_VOCABULARY = {
    TranscriptionJob.Domain.MEDICAL: (
        "diagnosis",
        "prognosis",
        "hypertension",
        "tachycardia",
        "myocardial infarction",
        "milligrams",
        "contraindicated",
        "CT scan",
        "MRI",
    ),
    TranscriptionJob.Domain.LEGAL: (
        "plaintiff",
        "defendant",
        "deposition",
        "affidavit",
        "subpoena",
        "voir dire",
        "habeas corpus",
        "stipulation",
        "Your Honor",
    ),
}


@dataclass(frozen=True)
class DispatchOutcome:
    strategy: str
    result: Optional[TranscriptResult] = None
    provider_job_id: str = ""
    callback_url: str = ""

    @property
    def is_async(self) -> bool:
        return self.strategy == ASYNC


def choose_strategy(duration_seconds) -> str:
    """Short media with a known duration is transcribed inline; everything else uses callbacks."""
    threshold = getattr(settings, "TRANSCRIPTION_SYNC_MAX_SECONDS", 300)
    try:
        duration = float(duration_seconds or 0)
    except (TypeError, ValueError):
        duration = 0.0
    if 0 < duration <= threshold:
        return SYNC
    return ASYNC


def build_provider_config(job: TranscriptionJob) -> Dict[str, Any]:
    if job.mode == plans.HUMAN:
        raise ValueError("Human transcription jobs are not sent to the provider.")

    options = load_mode_options(job.mode, job.mode_options)
    transcription_config: Dict[str, Any] = {
        "language": job.language or "en",
        "operating_point": job.operating_point or TranscriptionJob.OperatingPoint.ENHANCED,
    }
    if options.diarization:
        transcription_config["diarization"] = "speaker"
    if not options.punctuation:
        transcription_config["punctuation_overrides"] = {"permitted_marks": []}
    if not options.verbatim:
        transcription_config["transcript_filtering_config"] = {"remove_disfluencies": True}

    vocabulary = DOMAIN_VOCABULARY.get(job.domain)
    if vocabulary:
        transcription_config["domain"] = job.domain
        transcription_config["additional_vocab"] = [{"content": term} for term in vocabulary]

    return {"type": "transcription", "transcription_config": transcription_config}


def build_callback_url(job: TranscriptionJob) -> str:
    base_url = (getattr(settings, "SPEECHMATICS_CALLBACK_BASE_URL", "") or "").rstrip("/")
    token = getattr(settings, "SPEECHMATICS_WEBHOOK_TOKEN", "")
    if not base_url or not token:
        raise ProviderSubmissionFailed(
            technical_detail="SPEECHMATICS_CALLBACK_BASE_URL and SPEECHMATICS_WEBHOOK_TOKEN must be configured.",
        )
    return f"{base_url}{CALLBACK_PATH}?{urlencode({'token': token, 'job_id': str(job.pk)})}"


def dispatch(
    job: TranscriptionJob,
    media_bytes: bytes,
    *,
    client: Optional[SpeechmaticsClient] = None,
) -> DispatchOutcome:
    """Submit ``job`` to the provider.

    Async submissions persist ``speechmatics_job_id`` and ``callback_url`` on
    the job before returning. Provider failures surface as
    ``ProviderQuotaExceeded`` or ``ProviderSubmissionFailed``.
    """
    client = client or SpeechmaticsClient()
    config = build_provider_config(job)
    strategy = choose_strategy(job.duration_seconds)
    filename = job.original_filename or job.filename
    started = time.monotonic()

    try:
        if strategy == SYNC:
            result = client.transcribe(
                media_bytes,
                filename,
                config,
                timeout=getattr(settings, "TRANSCRIPTION_SYNC_TIMEOUT_SECONDS", 600),
            )
            outcome = DispatchOutcome(strategy=SYNC, result=result, provider_job_id=result.provider_job_id)
        else:
            callback_url = build_callback_url(job)
            provider_job_id = client.submit_job(media_bytes, filename, config, callback_url=callback_url)
            TranscriptionJob.objects.filter(pk=job.pk).update(
                speechmatics_job_id=provider_job_id,
                callback_url=callback_url,
                updated_at=timezone.now(),
            )
            job.speechmatics_job_id = provider_job_id
            job.callback_url = callback_url
            outcome = DispatchOutcome(strategy=ASYNC, provider_job_id=provider_job_id, callback_url=callback_url)
    except SpeechmaticsQuotaError as exc:
        PROVIDER_ERROR_COUNT.labels(kind="enhanced_quota" if exc.enhanced else "quota").inc()
        raise ProviderQuotaExceeded(enhanced=exc.enhanced, technical_detail=f"{exc} {exc.body}".strip()) from exc
    except SpeechmaticsError as exc:
        PROVIDER_ERROR_COUNT.labels(kind="provider").inc()
        raise ProviderSubmissionFailed(technical_detail=str(exc)) from exc
    finally:
        PROVIDER_SUBMIT_LATENCY.labels(strategy=strategy).observe(time.monotonic() - started)

    logger.info("Dispatched job %s via %s (provider job %s)", job.pk, strategy, outcome.provider_job_id)
    return outcome
