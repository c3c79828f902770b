"""URL routes for transcription jobs."""
from django.urls import path

from .views import (
    ApproveReviewView,
    CancelJobView,
    DeliverHumanTranscriptView,
    ProcessJobView,
    RejectReviewView,
    RetryJobView,
    SpeechmaticsCallbackView,
    TranscriptionJobDetailView,
    TranscriptionJobListCreateView,
)

app_name = "transcriptions"

urlpatterns = [
    path("", TranscriptionJobListCreateView.as_view(), name="job-list"),
    path("process/", ProcessJobView.as_view(), name="job-process"),
    path("callback/", SpeechmaticsCallbackView.as_view(), name="provider-callback"),
    path("<uuid:job_id>/", TranscriptionJobDetailView.as_view(), name="job-detail"),
    path("<uuid:job_id>/retry/", RetryJobView.as_view(), name="job-retry"),
    path("<uuid:job_id>/cancel/", CancelJobView.as_view(), name="job-cancel"),
    path("<uuid:job_id>/approve/", ApproveReviewView.as_view(), name="job-approve"),
    path("<uuid:job_id>/reject/", RejectReviewView.as_view(), name="job-reject"),
    path("<uuid:job_id>/deliver/", DeliverHumanTranscriptView.as_view(), name="job-deliver"),
]
