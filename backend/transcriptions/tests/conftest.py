import copy

import pytest

from billing.models import Account
from transcriptions.payloads import parse_mode_options
from transcriptions.services import jobs
from transcriptions.services.speechmatics import build_result

WORDS = [
    {"type": "word", "start_time": 0.1, "end_time": 0.4, "alternatives": [{"content": "Hello", "speaker": "S1"}]},
    {"type": "word", "start_time": 0.5, "end_time": 0.9, "alternatives": [{"content": "there", "speaker": "S1"}]},
    {
        "type": "punctuation",
        "start_time": 0.9,
        "end_time": 0.9,
        "attaches_to": "previous",
        "is_eos": True,
        "alternatives": [{"content": ".", "speaker": "S1"}],
    },
    {"type": "word", "start_time": 1.2, "end_time": 1.5, "alternatives": [{"content": "Hi", "speaker": "S2"}]},
    {
        "type": "punctuation",
        "start_time": 1.5,
        "end_time": 1.5,
        "attaches_to": "previous",
        "is_eos": True,
        "alternatives": [{"content": "!", "speaker": "S2"}],
    },
]


def transcript_payload(provider_job_id="sm-async", duration=95.0, status=None):
    job = {"id": provider_job_id, "duration": duration}
    if status:
        job["status"] = status
    return {"format": "2.9", "job": job, "results": copy.deepcopy(WORDS)}


class FakeSpeechmatics:
    """Stands in for SpeechmaticsClient; records what was sent."""

    def __init__(self, payload=None, error=None, status="done"):
        self.payload = payload or transcript_payload()
        self.error = error
        self.status = status
        self.submitted = []
        self.fetched = []

    def transcribe(self, media, filename, config, timeout=None):
        if self.error:
            raise self.error
        self.submitted.append({"config": config, "callback_url": None})
        return build_result(self.payload, provider_job_id="sm-sync")

    def submit_job(self, media, filename, config, callback_url=None):
        if self.error:
            raise self.error
        self.submitted.append({"config": config, "callback_url": callback_url})
        return "sm-async"

    def get_job_status(self, job_id):
        return {"id": job_id, "status": self.status}

    def get_transcript(self, job_id):
        self.fetched.append(job_id)
        return self.payload


@pytest.fixture
def fake_provider():
    return FakeSpeechmatics()


@pytest.fixture(autouse=True)
def media_download(monkeypatch):
    downloads = []

    def _download(url, *, timeout=None):
        downloads.append(url)
        return b"RIFF....WAVEfmt "

    monkeypatch.setattr(jobs, "download_media", _download)
    return downloads


@pytest.fixture
def account_state(user):
    def _set(**fields):
        Account.objects.filter(user=user).update(**fields)
        return Account.objects.get(user=user)

    return _set


@pytest.fixture
def hybrid_subscriber(account_state):
    return account_state(
        subscription_plan="hybrid-starter",
        subscription_status="active",
        included_minutes_per_month=300,
        credits=0,
    )


@pytest.fixture
def make_job(user):
    def _make(mode="ai", duration_seconds=120, options=None, owner=None):
        data = {
            "filename": "uploads/interview.mp3",
            "original_filename": "interview.mp3",
            "download_url": "https://files.test/uploads/interview.mp3",
            "mode": mode,
            "duration_seconds": duration_seconds,
            "options": parse_mode_options(mode, options or {}),
        }
        return jobs.submit_job(owner or user, data)

    return _make
