from django.contrib import admin

from .models import Account, CreditTransaction, UsageRecord, WebhookEventLog


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    """Balances are read-only here; corrections go through the wallet service."""

    list_display = (
        "user",
        "subscription_plan",
        "subscription_status",
        "included_minutes_per_month",
        "minutes_used_this_month",
        "minutes_reserved",
        "credits",
        "updated_at",
    )
    search_fields = ("user__username", "user__email", "stripe_customer_id", "stripe_subscription_id")
    list_filter = ("subscription_plan", "subscription_status", "trial_used")
    raw_id_fields = ("user",)
    readonly_fields = (
        "credits",
        "minutes_used_this_month",
        "minutes_reserved",
        "version",
        "created_at",
        "updated_at",
    )

    fieldsets = (
        ("Owner", {"fields": ("user",)}),
        (
            "Subscription",
            {
                "fields": (
                    "subscription_plan",
                    "subscription_status",
                    "included_minutes_per_month",
                    "billing_cycle_start",
                    "billing_cycle_end",
                    "trial_used",
                )
            },
        ),
        ("Balances", {"fields": ("credits", "minutes_used_this_month", "minutes_reserved", "version")}),
        ("Stripe", {"fields": ("stripe_customer_id", "stripe_subscription_id")}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )


class ImmutableAdmin(admin.ModelAdmin):
    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CreditTransaction)
class CreditTransactionAdmin(ImmutableAdmin):
    list_display = ("id", "account", "type", "amount", "job_id", "created_at")
    list_filter = ("type", "created_at")
    search_fields = ("id", "account__user__username", "idempotency_key", "job_id")
    ordering = ("-created_at",)


@admin.register(UsageRecord)
class UsageRecordAdmin(ImmutableAdmin):
    list_display = ("job_id", "user", "mode", "minutes_used", "credits_used", "source", "timestamp")
    list_filter = ("mode", "source", "timestamp")
    search_fields = ("job_id", "user__username")
    ordering = ("-timestamp",)


@admin.register(WebhookEventLog)
class WebhookEventLogAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "status", "handled", "received_at", "processed_at")
    list_filter = ("status", "handled", "event_type")
    search_fields = ("event_id",)
    readonly_fields = ("payload_hash", "received_at", "processed_at")
