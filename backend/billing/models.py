"""Billing models for subscription minutes, wallet credits and usage history."""
import uuid

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q

User = get_user_model()


class TranscriptionMode(models.TextChoices):
    AI = "ai", "AI"
    HYBRID = "hybrid", "Hybrid"
    HUMAN = "human", "Human"


class Account(models.Model):
    """Per-user ledger of subscription minutes and wallet credits.

    Balance fields (``credits``, ``minutes_used_this_month``, ``minutes_reserved``)
    are written only through ``billing.services.ledger``.
    """

    class SubscriptionStatus(models.TextChoices):
        ACTIVE = "active", "Active"
        TRIALING = "trialing", "Trialing"
        PAST_DUE = "past_due", "Past due"
        CANCELED = "canceled", "Canceled"
        INCOMPLETE = "incomplete", "Incomplete"
        NONE = "none", "None"

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name="billing_account",
        help_text="User owning this billing account.",
    )
    subscription_plan = models.CharField(
        max_length=64,
        default="none",
        help_text="Subscription plan identifier or 'none'.",
    )
    subscription_status = models.CharField(
        max_length=20,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.NONE,
    )
    included_minutes_per_month = models.IntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Minutes granted by the plan for each billing cycle.",
    )
    minutes_used_this_month = models.IntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Confirmed usage in the current billing cycle.",
    )
    minutes_reserved = models.IntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Minutes held for in-flight jobs.",
    )
    credits = models.IntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Wallet balance; debited immediately on reservation.",
    )
    billing_cycle_start = models.DateTimeField(null=True, blank=True)
    billing_cycle_end = models.DateTimeField(null=True, blank=True)
    stripe_customer_id = models.CharField(max_length=255, blank=True, db_index=True)
    stripe_subscription_id = models.CharField(max_length=255, blank=True, db_index=True)
    trial_used = models.BooleanField(
        default=False,
        help_text="Whether the one-off free trial has been granted.",
    )
    version = models.PositiveIntegerField(
        default=0,
        help_text="Optimistic concurrency token bumped on every ledger write.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_account"
        verbose_name = "Billing account"
        verbose_name_plural = "Billing accounts"
        ordering = ["user__id"]
        constraints = [
            models.CheckConstraint(condition=Q(credits__gte=0), name="billing_account_credits_non_negative"),
            models.CheckConstraint(
                condition=Q(minutes_reserved__gte=0),
                name="billing_account_reserved_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(minutes_used_this_month__gte=0),
                name="billing_account_used_non_negative",
            ),
        ]

    def __str__(self):
        return f"Account<{self.user_id}:{self.subscription_plan}>"

    @property
    def has_active_subscription(self) -> bool:
        return self.subscription_plan not in ("", "none") and self.subscription_status in (
            self.SubscriptionStatus.ACTIVE,
            self.SubscriptionStatus.TRIALING,
        )

    @property
    def available_minutes(self) -> int:
        return max(
            0,
            (self.included_minutes_per_month or 0)
            - (self.minutes_used_this_month or 0)
            - (self.minutes_reserved or 0),
        )

    @classmethod
    def get_or_create_for_user(cls, user) -> "Account":
        """Ensure a billing account exists for the given user."""
        account, _ = cls.objects.get_or_create(user=user)
        return account


class CreditTransaction(models.Model):
    """Immutable audit trail for every wallet movement."""

    class TransactionType(models.TextChoices):
        PURCHASE = "purchase", "Purchase"
        RESERVATION_DEBIT = "reservation_debit", "Reservation debit"
        REFUND = "refund", "Refund"
        ADMIN_ADJUSTMENT = "admin_adjustment", "Admin adjustment"
        TRIAL_GRANT = "trial_grant", "Trial grant"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    account = models.ForeignKey(
        Account,
        on_delete=models.CASCADE,
        related_name="credit_transactions",
    )
    amount = models.IntegerField(help_text="Signed credits; positive grants, negative debits.")
    type = models.CharField(max_length=32, choices=TransactionType.choices)
    description = models.TextField(blank=True)
    idempotency_key = models.CharField(max_length=255, blank=True, null=True)
    job_id = models.UUIDField(null=True, blank=True, db_index=True)
    metadata = models.JSONField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_credit_transaction"
        verbose_name = "Credit transaction"
        verbose_name_plural = "Credit transactions"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=~Q(amount=0), name="credit_transaction_non_zero"),
            models.UniqueConstraint(
                fields=["idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="unique_credit_transaction_idempotency_key",
            ),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("CreditTransaction records are immutable and cannot be updated.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("CreditTransaction records are immutable and cannot be deleted.")

    def __str__(self):
        return f"CreditTransaction<{self.type}:{self.amount} for {self.account_id}>"


class UsageRecord(models.Model):
    """Append-only fact written once per finalised job."""

    class Source(models.TextChoices):
        SUBSCRIPTION = "subscription", "Subscription"
        CREDITS = "credits", "Credits"
        OVERAGE = "overage", "Overage"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="usage_records")
    job_id = models.UUIDField(unique=True)
    mode = models.CharField(max_length=16, choices=TranscriptionMode.choices)
    minutes_used = models.IntegerField(validators=[MinValueValidator(0)])
    credits_used = models.IntegerField(default=0, validators=[MinValueValidator(0)])
    source = models.CharField(max_length=16, choices=Source.choices)
    timestamp = models.DateTimeField(auto_now_add=True)
    billing_cycle_start = models.DateTimeField(null=True, blank=True)
    billing_cycle_end = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(blank=True, null=True)

    class Meta:
        db_table = "billing_usage_record"
        verbose_name = "Usage record"
        verbose_name_plural = "Usage records"
        ordering = ["-timestamp"]
        indexes = [
            models.Index(fields=["user", "timestamp"], name="usage_record_user_ts_idx"),
            models.Index(fields=["source", "billing_cycle_start"], name="usage_record_cycle_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("UsageRecord entries are immutable and cannot be updated.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("UsageRecord entries are immutable and cannot be deleted.")

    def __str__(self):
        return f"UsageRecord<{self.job_id}:{self.minutes_used}m {self.source}>"


class WebhookEventLog(models.Model):
    """Idempotency log for payment-provider webhook deliveries."""

    class Status(models.TextChoices):
        RECEIVED = "received", "Received"
        PROCESSED = "processed", "Processed"
        IGNORED = "ignored", "Ignored"
        FAILED = "failed", "Failed"

    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.RECEIVED)
    payload_hash = models.CharField(max_length=64, blank=True)
    handled = models.BooleanField(default=False)
    last_error = models.TextField(blank=True)
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "billing_webhook_event_log"
        ordering = ["-received_at"]

    def __str__(self):
        return f"WebhookEventLog<{self.event_type}:{self.event_id}>"
