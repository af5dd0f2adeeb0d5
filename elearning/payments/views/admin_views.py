"""
Payment administration and read endpoints.

- GET  /api/elearning/payments/            admin list (?status=, ?method=, ?user=)
- GET  /api/elearning/payments/<id>/       owner or admin
- POST /api/elearning/payments/<id>/refund/  admin, {amount, reason}
"""

import logging

from rest_framework import generics, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from elearning.enrollments.serializers import EnrollmentSerializer
from elearning.permissions import IsAdmin, IsOwnerOrAdmin, is_admin

from ..models import Payment
from ..serializers import PaymentAdminSerializer, PaymentSerializer, RefundSerializer
from .mixins import PaymentServiceMixin

logger = logging.getLogger(__name__)


class PaymentPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 100


class PaymentListView(generics.ListAPIView):
    permission_classes = [IsAdmin]
    serializer_class = PaymentAdminSerializer
    pagination_class = PaymentPagination

    def get_queryset(self):
        queryset = Payment.objects.select_related("user", "course").order_by("-created_at")
        params = self.request.query_params
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if params.get("method"):
            queryset = queryset.filter(method=params["method"])
        if params.get("user"):
            queryset = queryset.filter(user_id=params["user"])
        return queryset


class PaymentDetailView(generics.RetrieveAPIView):
    permission_classes = [IsOwnerOrAdmin]
    queryset = Payment.objects.select_related("enrollment", "course")

    def get_serializer_class(self):
        return PaymentAdminSerializer if is_admin(self.request.user) else PaymentSerializer


class PaymentRefundView(PaymentServiceMixin, APIView):
    permission_classes = [IsAdmin]

    def post(self, request, pk):
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        outcome = self.get_refund_processor().refund(
            pk,
            serializer.validated_data["amount"],
            serializer.validated_data["reason"],
            request.user,
        )
        return Response(
            {
                "refund_ref": outcome.refund_ref,
                "refunded": str(outcome.amount),
                "full_refund": outcome.full,
                "payment": PaymentAdminSerializer(outcome.payment).data,
                "enrollment": EnrollmentSerializer(outcome.enrollment).data,
            },
            status=status.HTTP_200_OK,
        )
