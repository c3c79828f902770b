import logging

import requests
from django.conf import settings
from requests.exceptions import RequestException

from transcriptions.exceptions import DownloadFailed

logger = logging.getLogger(__name__)


def download_media(url: str, *, timeout: int = None) -> bytes:
    """Fetch uploaded media from storage."""
    timeout = timeout or getattr(settings, "TRANSCRIPTION_DOWNLOAD_TIMEOUT_SECONDS", 60)
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except RequestException as exc:
        logger.warning("Media download from %s failed: %s", url, exc)
        raise DownloadFailed(technical_detail=f"Download failed: {exc}") from exc

    if not response.content:
        raise DownloadFailed(technical_detail=f"Downloaded file from {url} is empty.")
    return response.content
