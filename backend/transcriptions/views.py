"""HTTP endpoints for submitting, tracking and administering transcription jobs."""
from __future__ import annotations

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.shortcuts import get_object_or_404
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing import plans
from billing.models import Account
from billing.pagination import BoundedPageNumberPagination
from billing.services.ledger import ReconciliationError
from transcriptions.exceptions import CallbackAuthError, FundingRejected
from transcriptions.models import TranscriptionJob
from transcriptions.serializers import (
    HumanDeliverySerializer,
    ProcessJobSerializer,
    ReviewDecisionSerializer,
    TranscriptionJobCreateSerializer,
    TranscriptionJobSerializer,
)
from transcriptions.services import jobs
from transcriptions.state_machine import InvalidTransition
from transcriptions.tasks import process_transcription_job

logger = logging.getLogger(__name__)


def _funding_rejected_response(exc: FundingRejected) -> Response:
    body = {"detail": exc.result.message, "reservation": exc.result.to_dict()}
    if exc.job is not None:
        body["job"] = TranscriptionJobSerializer(exc.job).data
    return Response(body, status=status.HTTP_402_PAYMENT_REQUIRED)


def _conflict_response(exc: Exception) -> Response:
    return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)


def _visible_jobs(request):
    queryset = TranscriptionJob.objects.all()
    if not request.user.is_staff:
        queryset = queryset.filter(user=request.user)
    return queryset


class TranscriptionJobListCreateView(APIView):
    """List the caller's jobs or create a new, funded job."""

    permission_classes = [IsAuthenticated]

    def get(self, request):
        queryset = TranscriptionJob.objects.filter(user=request.user).order_by("-created_at")
        job_status = request.query_params.get("status")
        if job_status:
            queryset = queryset.filter(status=job_status)
        paginator = BoundedPageNumberPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        return paginator.get_paginated_response(TranscriptionJobSerializer(page, many=True).data)

    def post(self, request):
        serializer = TranscriptionJobCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        Account.get_or_create_for_user(request.user)

        try:
            job = jobs.submit_job(request.user, serializer.validated_data)
        except FundingRejected as exc:
            logger.info("Job creation for user %s rejected: %s", request.user.pk, exc.result.error_code)
            return _funding_rejected_response(exc)

        return Response(TranscriptionJobSerializer(job).data, status=status.HTTP_201_CREATED)


class ProcessJobView(APIView):
    """Queue a funded job for download and submission to the provider."""

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ProcessJobSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        job = get_object_or_404(_visible_jobs(request), pk=data["job_id"])
        if job.status != TranscriptionJob.Status.PROCESSING:
            return Response(
                {"detail": f"Job is {job.status} and cannot be processed."},
                status=status.HTTP_409_CONFLICT,
            )

        process_transcription_job.delay(
            str(job.pk),
            language=data.get("language"),
            operating_point=data.get("operating_point"),
        )
        return Response({"status": "queued", "job_id": str(job.pk)}, status=status.HTTP_202_ACCEPTED)


@method_decorator(csrf_exempt, name="dispatch")
class SpeechmaticsCallbackView(APIView):
    """Receive job notifications from Speechmatics."""

    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]

    def post(self, request):
        token = request.query_params.get("token")
        job_id = request.query_params.get("job_id")
        if not job_id:
            return Response({"detail": "job_id is required."}, status=status.HTTP_400_BAD_REQUEST)

        payload = request.data if isinstance(request.data, dict) else {}
        try:
            outcome = jobs.handle_callback(token, job_id, payload)
        except CallbackAuthError:
            logger.warning("Rejected provider callback for job %s: bad token.", job_id)
            return Response({"detail": "Invalid token."}, status=status.HTTP_401_UNAUTHORIZED)
        except (TranscriptionJob.DoesNotExist, DjangoValidationError, ValueError):
            return Response({"detail": "Job not found."}, status=status.HTTP_404_NOT_FOUND)

        return Response({"status": outcome.status, "job_status": outcome.job.status})


class TranscriptionJobDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, job_id):
        job = get_object_or_404(_visible_jobs(request), pk=job_id)
        return Response(TranscriptionJobSerializer(job).data)


class RetryJobView(APIView):
    """Retry a failed job; funding is reserved again."""

    permission_classes = [IsAuthenticated]

    def post(self, request, job_id):
        job = get_object_or_404(_visible_jobs(request), pk=job_id)
        try:
            job = jobs.retry_job(job.pk)
        except FundingRejected as exc:
            return _funding_rejected_response(exc)
        except (InvalidTransition, ReconciliationError) as exc:
            return _conflict_response(exc)

        if job.mode != plans.HUMAN:
            transaction.on_commit(lambda: process_transcription_job.delay(str(job.pk)))
        return Response(TranscriptionJobSerializer(job).data)


class CancelJobView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, job_id):
        job = get_object_or_404(TranscriptionJob, pk=job_id)
        serializer = ReviewDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            job = jobs.cancel_job(
                job.pk,
                refund=serializer.validated_data["refund"],
                reason=serializer.validated_data["reason"],
                actor=request.user.get_username(),
            )
        except (InvalidTransition, ReconciliationError) as exc:
            return _conflict_response(exc)
        return Response(TranscriptionJobSerializer(job).data)


class ApproveReviewView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, job_id):
        job = get_object_or_404(TranscriptionJob, pk=job_id)
        serializer = ReviewDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            job = jobs.approve_review(
                job.pk,
                transcript=serializer.validated_data.get("transcript"),
                actor=request.user.get_username(),
            )
        except (InvalidTransition, ReconciliationError) as exc:
            return _conflict_response(exc)
        return Response(TranscriptionJobSerializer(job).data)


class RejectReviewView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, job_id):
        job = get_object_or_404(TranscriptionJob, pk=job_id)
        serializer = ReviewDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            job = jobs.reject_review(
                job.pk,
                refund=serializer.validated_data["refund"],
                reason=serializer.validated_data["reason"],
                actor=request.user.get_username(),
            )
        except (InvalidTransition, ReconciliationError) as exc:
            return _conflict_response(exc)
        return Response(TranscriptionJobSerializer(job).data)


class DeliverHumanTranscriptView(APIView):
    """Attach a human-produced transcript and complete the job."""

    permission_classes = [IsAdminUser]

    def post(self, request, job_id):
        job = get_object_or_404(TranscriptionJob, pk=job_id)
        serializer = HumanDeliverySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            job = jobs.complete_human_job(
                job.pk,
                data["transcript"],
                timestamped_transcript=data.get("timestamped_transcript"),
                duration_seconds=data.get("duration_seconds"),
                actor=request.user.get_username(),
            )
        except (InvalidTransition, ReconciliationError) as exc:
            return _conflict_response(exc)
        return Response(TranscriptionJobSerializer(job).data)
