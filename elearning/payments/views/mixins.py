from urllib.parse import urlencode

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

from core.payment_gateways import build_gateway
from elearning.permissions import is_admin

from ..serializers import reconciliation_payload
from ..services import (
    CheckoutService,
    ConfirmationReconciler,
    Outcome,
    RefundProcessor,
)


class PaymentServiceMixin:
    """
    Builds the payment services for one request.

    Gateways come from `get_gateway`, which resolves `build_gateway` at call
    time so tests can patch `elearning.payments.views.mixins.build_gateway`.
    """

    def get_gateway(self, method):
        return build_gateway(method)

    def get_reconciler(self) -> ConfirmationReconciler:
        return ConfirmationReconciler(gateway_factory=self.get_gateway)

    def get_checkout_service(self) -> CheckoutService:
        return CheckoutService(gateway_factory=self.get_gateway)

    def get_refund_processor(self) -> RefundProcessor:
        return RefundProcessor(gateway_factory=self.get_gateway)

    def reconciliation_response(self, request, result) -> Response:
        if result.is_success:
            status_code = status.HTTP_200_OK
        elif result.outcome == Outcome.PENDING:
            status_code = status.HTTP_202_ACCEPTED
        elif result.error is not None:
            status_code = result.error.status_code
        else:
            status_code = status.HTTP_400_BAD_REQUEST
        return Response(
            reconciliation_payload(result, admin=is_admin(request.user)),
            status=status_code,
        )


def frontend_status_url(state: str, transaction_ref: str = "", error: str = "") -> str:
    url = f"{settings.FRONTEND_URL.rstrip('/')}/payment/redirect/{state}"
    params = {k: v for k, v in (("tran_id", transaction_ref), ("error", error)) if v}
    return f"{url}?{urlencode(params)}" if params else url
