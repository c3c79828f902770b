"""Exceptions raised by the transcription pipeline."""
from __future__ import annotations

ENHANCED_QUOTA_MESSAGE = "Enhanced model quota exceeded. Using standard model automatically."
MONTHLY_QUOTA_MESSAGE = "Monthly transcription quota exceeded. Please contact support or wait for next month."


class TranscriptionProviderError(Exception):
    """Base class for failures talking to the transcription provider."""

    failure_kind = "provider"
    user_message = "Transcription failed. Please try again."

    def __init__(self, message: str = "", *, technical_detail: str = ""):
        super().__init__(message or self.user_message)
        self.technical_detail = technical_detail or message


class ProviderSubmissionFailed(TranscriptionProviderError):
    """The provider did not accept or finish the job."""


class ProviderQuotaExceeded(TranscriptionProviderError):
    """The provider account ran out of quota."""

    failure_kind = "quota"

    def __init__(self, message: str = "", *, enhanced: bool = False, technical_detail: str = ""):
        self.enhanced = enhanced
        if enhanced:
            self.failure_kind = "enhanced_quota"
        super().__init__(message, technical_detail=technical_detail)

    @property
    def user_message(self) -> str:
        return ENHANCED_QUOTA_MESSAGE if self.enhanced else MONTHLY_QUOTA_MESSAGE


class DownloadFailed(TranscriptionProviderError):
    """The uploaded media could not be fetched."""

    failure_kind = "download"
    user_message = "We could not download your file. Please upload it again."


class FundingRejected(Exception):
    """Raised when a job cannot be funded; carries the reservation result."""

    def __init__(self, result, job=None):
        super().__init__(result.message)
        self.result = result
        self.job = job


class CallbackAuthError(Exception):
    """Raised when a provider callback carries the wrong token."""
