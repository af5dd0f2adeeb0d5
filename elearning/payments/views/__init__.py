from .admin_views import PaymentDetailView, PaymentListView, PaymentRefundView
from .intent_views import IntentConfirmView, IntentInitView, StripeConfigView, StripeWebhookView
from .redirect_views import (
    RedirectCallbackView,
    RedirectInitView,
    RedirectIPNView,
    RedirectQueryView,
    RedirectVerifyView,
)
