import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from talktotext.celery import app as celery_app


@pytest.fixture(autouse=True)
def eager_celery():
    celery_app.conf.CELERY_TASK_ALWAYS_EAGER = True
    celery_app.conf.CELERY_TASK_EAGER_PROPAGATES = True
    yield
    celery_app.conf.CELERY_TASK_ALWAYS_EAGER = False


@pytest.fixture(autouse=True)
def transcription_settings(settings):
    settings.SPEECHMATICS_API_KEY = "test-key"
    settings.SPEECHMATICS_API_URL = "https://speechmatics.test/v2"
    settings.SPEECHMATICS_WEBHOOK_TOKEN = "callback-secret"
    settings.SPEECHMATICS_CALLBACK_BASE_URL = "https://app.test"
    settings.TRANSCRIPTION_SYNC_MAX_SECONDS = 300
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test_123"
    return settings


@pytest.fixture
def user(db):
    return get_user_model().objects.create_user(
        username="alice",
        email="alice@example.com",
        password="testpass123",
    )


@pytest.fixture
def other_user(db):
    return get_user_model().objects.create_user(
        username="bob",
        email="bob@example.com",
        password="testpass123",
    )


@pytest.fixture
def staff_user(db):
    return get_user_model().objects.create_user(
        username="ops",
        email="ops@example.com",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client
