import uuid

import django.core.validators
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Account",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("subscription_plan", models.CharField(default="none", help_text="Subscription plan identifier or 'none'.", max_length=64)),
                ("subscription_status", models.CharField(choices=[("active", "Active"), ("trialing", "Trialing"), ("past_due", "Past due"), ("canceled", "Canceled"), ("incomplete", "Incomplete"), ("none", "None")], default="none", max_length=20)),
                ("included_minutes_per_month", models.IntegerField(default=0, help_text="Minutes granted by the plan for each billing cycle.", validators=[django.core.validators.MinValueValidator(0)])),
                ("minutes_used_this_month", models.IntegerField(default=0, help_text="Confirmed usage in the current billing cycle.", validators=[django.core.validators.MinValueValidator(0)])),
                ("minutes_reserved", models.IntegerField(default=0, help_text="Minutes held for in-flight jobs.", validators=[django.core.validators.MinValueValidator(0)])),
                ("credits", models.IntegerField(default=0, help_text="Wallet balance; debited immediately on reservation.", validators=[django.core.validators.MinValueValidator(0)])),
                ("billing_cycle_start", models.DateTimeField(blank=True, null=True)),
                ("billing_cycle_end", models.DateTimeField(blank=True, null=True)),
                ("stripe_customer_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("stripe_subscription_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("trial_used", models.BooleanField(default=False, help_text="Whether the one-off free trial has been granted.")),
                ("version", models.PositiveIntegerField(default=0, help_text="Optimistic concurrency token bumped on every ledger write.")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("user", models.OneToOneField(help_text="User owning this billing account.", on_delete=models.deletion.CASCADE, related_name="billing_account", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "billing_account",
                "verbose_name": "Billing account",
                "verbose_name_plural": "Billing accounts",
                "ordering": ["user__id"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(credits__gte=0), name="billing_account_credits_non_negative"),
                    models.CheckConstraint(condition=models.Q(minutes_reserved__gte=0), name="billing_account_reserved_non_negative"),
                    models.CheckConstraint(condition=models.Q(minutes_used_this_month__gte=0), name="billing_account_used_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CreditTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.IntegerField(help_text="Signed credits; positive grants, negative debits.")),
                ("type", models.CharField(choices=[("purchase", "Purchase"), ("reservation_debit", "Reservation debit"), ("refund", "Refund"), ("admin_adjustment", "Admin adjustment"), ("trial_grant", "Trial grant")], max_length=32)),
                ("description", models.TextField(blank=True)),
                ("idempotency_key", models.CharField(blank=True, max_length=255, null=True)),
                ("job_id", models.UUIDField(blank=True, db_index=True, null=True)),
                ("metadata", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("account", models.ForeignKey(on_delete=models.deletion.CASCADE, related_name="credit_transactions", to="billing.account")),
            ],
            options={
                "db_table": "billing_credit_transaction",
                "verbose_name": "Credit transaction",
                "verbose_name_plural": "Credit transactions",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(condition=~models.Q(amount=0), name="credit_transaction_non_zero"),
                    models.UniqueConstraint(condition=models.Q(idempotency_key__isnull=False), fields=["idempotency_key"], name="unique_credit_transaction_idempotency_key"),
                ],
            },
        ),
        migrations.CreateModel(
            name="UsageRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("job_id", models.UUIDField(unique=True)),
                ("mode", models.CharField(choices=[("ai", "AI"), ("hybrid", "Hybrid"), ("human", "Human")], max_length=16)),
                ("minutes_used", models.IntegerField(validators=[django.core.validators.MinValueValidator(0)])),
                ("credits_used", models.IntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ("source", models.CharField(choices=[("subscription", "Subscription"), ("credits", "Credits"), ("overage", "Overage")], max_length=16)),
                ("timestamp", models.DateTimeField(auto_now_add=True)),
                ("billing_cycle_start", models.DateTimeField(blank=True, null=True)),
                ("billing_cycle_end", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, null=True)),
                ("user", models.ForeignKey(on_delete=models.deletion.CASCADE, related_name="usage_records", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "billing_usage_record",
                "verbose_name": "Usage record",
                "verbose_name_plural": "Usage records",
                "ordering": ["-timestamp"],
                "indexes": [
                    models.Index(fields=["user", "timestamp"], name="usage_record_user_ts_idx"),
                    models.Index(fields=["source", "billing_cycle_start"], name="usage_record_cycle_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEventLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_id", models.CharField(max_length=255, unique=True)),
                ("event_type", models.CharField(blank=True, max_length=255)),
                ("status", models.CharField(choices=[("received", "Received"), ("processed", "Processed"), ("ignored", "Ignored"), ("failed", "Failed")], default="received", max_length=16)),
                ("payload_hash", models.CharField(blank=True, max_length=64)),
                ("handled", models.BooleanField(default=False)),
                ("last_error", models.TextField(blank=True)),
                ("received_at", models.DateTimeField(auto_now_add=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "billing_webhook_event_log",
                "ordering": ["-received_at"],
            },
        ),
    ]
