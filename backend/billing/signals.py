import logging

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from billing.models import Account

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_billing_account(sender, instance, created, **kwargs):
    if not created or kwargs.get("raw"):
        return
    Account.objects.get_or_create(user=instance)
    logger.debug("Created billing account for user %s", instance.pk)
