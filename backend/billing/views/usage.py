"""Usage history and wallet transaction listings."""
from __future__ import annotations

from rest_framework.generics import ListAPIView
from rest_framework.permissions import IsAuthenticated

from billing.models import CreditTransaction, UsageRecord
from billing.pagination import BoundedPageNumberPagination
from billing.serializers import CreditTransactionSerializer, UsageRecordSerializer


class UsageRecordListView(ListAPIView):
    serializer_class = UsageRecordSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination

    def get_queryset(self):
        queryset = UsageRecord.objects.filter(user=self.request.user)
        source = self.request.query_params.get("source")
        if source:
            queryset = queryset.filter(source=source)
        return queryset.order_by("-timestamp")


class CreditTransactionListView(ListAPIView):
    serializer_class = CreditTransactionSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination

    def get_queryset(self):
        return CreditTransaction.objects.filter(account__user=self.request.user).order_by("-created_at")
