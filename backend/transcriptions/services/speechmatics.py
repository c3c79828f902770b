"""Speechmatics batch API client and transcript parsing."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from django.conf import settings
from requests.exceptions import ConnectionError, HTTPError, RequestException, Timeout

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://asr.api.speechmatics.com/v2"
DEFAULT_SPEAKER = "UU"


class SpeechmaticsError(Exception):
    """Raised for any failed exchange with the Speechmatics API."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SpeechmaticsConfigurationError(SpeechmaticsError):
    pass


class SpeechmaticsQuotaError(SpeechmaticsError):
    def __init__(self, message: str, *, enhanced: bool = False, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message, status_code=status_code, body=body)
        self.enhanced = enhanced


class SpeechmaticsJobRejected(SpeechmaticsError):
    pass


class SpeechmaticsTimeout(SpeechmaticsError):
    pass


@dataclass(frozen=True)
class TranscriptResult:
    text: str
    segments: List[Dict[str, Any]] = field(default_factory=list)
    duration_seconds: float = 0.0
    speakers: int = 0
    provider_job_id: str = ""


def is_quota_error(status_code: Optional[int], body: str) -> Tuple[bool, bool]:
    """Return ``(is_quota, is_enhanced_model_quota)`` for an error response."""
    if status_code not in (403, 429):
        return False, False
    text = (body or "").lower()
    if "quota" not in text and "limit" not in text:
        return False, False
    return True, "enhanced" in text


class SpeechmaticsClient:
    """Thin wrapper over the batch jobs API.

    :param api_key: bearer token; defaults to ``settings.SPEECHMATICS_API_KEY``
    :param api_url: API root; defaults to ``settings.SPEECHMATICS_API_URL``
    :param session: optional ``requests.Session`` (tests pass a mock)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        poll_interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key if api_key is not None else getattr(settings, "SPEECHMATICS_API_KEY", "")
        self.api_url = (api_url or getattr(settings, "SPEECHMATICS_API_URL", "") or DEFAULT_API_URL).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._sleep = sleep

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise SpeechmaticsConfigurationError("SPEECHMATICS_API_KEY is not configured.")
        return {"Authorization": f"Bearer {self.api_key}"}

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.api_url}{path}"
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except Timeout as exc:
            raise SpeechmaticsError(f"Request to Speechmatics timed out after {self.timeout} seconds.") from exc
        except ConnectionError as exc:
            raise SpeechmaticsError("Failed to connect to the Speechmatics API.") from exc
        except HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            body = exc.response.text if exc.response is not None else ""
            quota, enhanced = is_quota_error(status_code, body)
            if quota:
                raise SpeechmaticsQuotaError(
                    f"Speechmatics quota exceeded ({status_code}).",
                    enhanced=enhanced,
                    status_code=status_code,
                    body=body,
                ) from exc
            if status_code == 401:
                message = "Invalid Speechmatics API credentials."
            elif status_code == 429:
                message = "Speechmatics rate limit exceeded."
            elif status_code and 500 <= status_code < 600:
                message = f"Speechmatics server error ({status_code})."
            else:
                message = f"Speechmatics HTTP error {status_code}: {body[:200]}"
            raise SpeechmaticsError(message, status_code=status_code, body=body) from exc
        except RequestException as exc:
            raise SpeechmaticsError(f"Request to Speechmatics failed: {exc}") from exc
        return response

    def _json(self, response: requests.Response) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as exc:
            raise SpeechmaticsError("Invalid JSON response received from Speechmatics.", body=response.text) from exc

    def submit_job(
        self,
        media: bytes,
        filename: str,
        config: Dict[str, Any],
        callback_url: Optional[str] = None,
    ) -> str:
        """Create a batch job and return the provider job id."""
        job_config = dict(config)
        if callback_url:
            job_config["notification_config"] = [{"url": callback_url, "contents": ["transcript"]}]
        files = {"data_file": (filename or "audiofile", media, "application/octet-stream")}
        data = {"config": json.dumps(job_config)}
        response = self._request("POST", "/jobs", files=files, data=data)
        job_id = self._json(response).get("id")
        if not job_id:
            raise SpeechmaticsError("Speechmatics did not return a job id.", body=response.text)
        logger.info("Submitted Speechmatics job %s (callback=%s)", job_id, bool(callback_url))
        return job_id

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        return self._json(self._request("GET", f"/jobs/{job_id}")).get("job") or {}

    def get_transcript(self, job_id: str) -> Dict[str, Any]:
        return self._json(
            self._request(
                "GET",
                f"/jobs/{job_id}/transcript",
                params={"format": "json-v2"},
                headers={"Accept": "application/json"},
            )
        )

    def delete_job(self, job_id: str) -> None:
        try:
            self._request("DELETE", f"/jobs/{job_id}")
        except SpeechmaticsError as exc:
            logger.warning("Failed to clean up Speechmatics job %s: %s", job_id, exc)

    def transcribe(
        self,
        media: bytes,
        filename: str,
        config: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> TranscriptResult:
        """Submit, poll until the job finishes, and return the parsed transcript."""
        job_id = self.submit_job(media, filename, config)
        deadline = time.monotonic() + (timeout or 600)

        while True:
            status = self.get_job_status(job_id).get("status")
            if status == "done":
                break
            if status == "rejected":
                self.delete_job(job_id)
                raise SpeechmaticsJobRejected(f"Speechmatics rejected job {job_id}.")
            if time.monotonic() >= deadline:
                self.delete_job(job_id)
                raise SpeechmaticsTimeout(f"Speechmatics job {job_id} did not finish in time.")
            self._sleep(self.poll_interval)

        payload = self.get_transcript(job_id)
        result = build_result(payload, provider_job_id=job_id)
        self.delete_job(job_id)
        return result


def parse_transcript(payload: Dict[str, Any]) -> Tuple[str, List[Dict[str, Any]]]:
    """Group provider results into sentence segments.

    A segment ends on end-of-sentence punctuation or when the speaker changes;
    punctuation attached to the previous word is glued onto it.
    """
    segments: List[Dict[str, Any]] = []
    sentence = ""
    start: Optional[float] = None
    end = 0.0
    speaker: Optional[str] = None

    def _flush():
        if sentence.strip() and start is not None:
            segments.append({"start": start, "end": end, "text": sentence.strip(), "speaker": speaker or DEFAULT_SPEAKER})

    for result in payload.get("results") or []:
        alternatives = result.get("alternatives") or []
        if not alternatives or not alternatives[0].get("content"):
            continue
        content = alternatives[0]["content"]
        kind = result.get("type")
        word_start = result.get("start_time") or 0
        word_end = result.get("end_time") or 0
        word_speaker = result.get("speaker") or alternatives[0].get("speaker") or DEFAULT_SPEAKER

        if kind == "word" and start is None:
            start = word_start
            speaker = word_speaker

        if kind == "word" and speaker and speaker != word_speaker and sentence.strip():
            _flush()
            sentence = content
            start = word_start
            end = word_end
            speaker = word_speaker
        else:
            if kind == "punctuation" and result.get("attaches_to") == "previous":
                sentence += content
            elif kind == "word":
                sentence += (" " if sentence else "") + content
            end = word_end

        if kind == "punctuation" and result.get("is_eos") and sentence.strip():
            _flush()
            sentence = ""
            start = None
            end = 0.0
            speaker = None

    _flush()
    text = " ".join(segment["text"] for segment in segments)
    return text, segments


def duration_from_payload(payload: Dict[str, Any]) -> float:
    job = payload.get("job") or payload.get("jobinfo") or {}
    try:
        return float(job.get("duration") or 0)
    except (TypeError, ValueError):
        return 0.0


def build_result(payload: Dict[str, Any], *, provider_job_id: str = "") -> TranscriptResult:
    text, segments = parse_transcript(payload)
    speakers = {segment["speaker"] for segment in segments if segment["speaker"] != DEFAULT_SPEAKER}
    return TranscriptResult(
        text=text,
        segments=segments,
        duration_seconds=duration_from_payload(payload),
        speakers=len(speakers),
        provider_job_id=provider_job_id or (payload.get("job") or {}).get("id", ""),
    )
