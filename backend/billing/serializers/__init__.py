"""Serializers for billing account, usage and wallet endpoints."""
from __future__ import annotations

from rest_framework import serializers

from billing import plans
from billing.models import Account, CreditTransaction, UsageRecord


class AccountSummarySerializer(serializers.Serializer):
    subscription_plan = serializers.CharField()
    subscription_status = serializers.CharField()
    included_minutes_per_month = serializers.IntegerField()
    minutes_used_this_month = serializers.IntegerField()
    minutes_reserved = serializers.IntegerField()
    minutes_available = serializers.IntegerField()
    credits = serializers.IntegerField()
    billing_cycle_start = serializers.DateTimeField(allow_null=True)
    billing_cycle_end = serializers.DateTimeField(allow_null=True)
    cycle_jobs = serializers.IntegerField()
    cycle_minutes = serializers.IntegerField()
    cycle_credits = serializers.IntegerField()
    cycle_overage_minutes = serializers.IntegerField()
    allowed_modes = serializers.SerializerMethodField()

    def get_allowed_modes(self, obj):
        plan = plans.get_plan(obj.get("subscription_plan"))
        return list(plan.allowed_modes) if plan else []


class AccountSerializer(serializers.ModelSerializer):
    minutes_available = serializers.IntegerField(source="available_minutes", read_only=True)

    class Meta:
        model = Account
        fields = (
            "subscription_plan",
            "subscription_status",
            "included_minutes_per_month",
            "minutes_used_this_month",
            "minutes_reserved",
            "minutes_available",
            "credits",
            "billing_cycle_start",
            "billing_cycle_end",
            "trial_used",
        )
        read_only_fields = fields


class UsageRecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = UsageRecord
        fields = (
            "id",
            "job_id",
            "mode",
            "minutes_used",
            "credits_used",
            "source",
            "timestamp",
            "billing_cycle_start",
            "billing_cycle_end",
        )
        read_only_fields = fields


class CreditTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = CreditTransaction
        fields = ("id", "amount", "type", "description", "job_id", "created_at")
        read_only_fields = fields
