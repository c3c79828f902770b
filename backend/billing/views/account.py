"""Account balance and subscription views."""
from __future__ import annotations

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import Account
from billing.serializers import AccountSerializer, AccountSummarySerializer
from billing.services import SubscriptionError, start_free_trial, usage_summary


class AccountSummaryView(APIView):
    """Return the authenticated user's balances and current-cycle usage."""

    permission_classes = [IsAuthenticated]

    def get(self, request):
        Account.get_or_create_for_user(request.user)
        serializer = AccountSummarySerializer(usage_summary(request.user.pk))
        return Response(serializer.data)


class FreeTrialView(APIView):
    """Start the one-off free trial for the authenticated user."""

    permission_classes = [IsAuthenticated]

    def post(self, request):
        Account.get_or_create_for_user(request.user)
        try:
            account = start_free_trial(request.user.pk)
        except SubscriptionError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)
        return Response(AccountSerializer(account).data, status=status.HTTP_201_CREATED)
