from decimal import Decimal, InvalidOperation

from rest_framework import serializers

from elearning.enrollments.serializers import EnrollmentSerializer

from .models import Payment


def parse_amount(value):
    """Decimal rounded to cents, or None for a blank field."""
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value).strip()).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise serializers.ValidationError("A valid number is required.")
    if amount.is_nan():
        raise serializers.ValidationError("A valid number is required.")
    return amount


class PaymentSerializer(serializers.ModelSerializer):
    refundable_amount = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "user",
            "enrollment",
            "course",
            "amount",
            "currency",
            "method",
            "status",
            "transaction_ref",
            "gateway_transaction_ref",
            "validation_ref",
            "discount_amount",
            "discount_code",
            "tax_amount",
            "tax_rate",
            "net_amount",
            "refund_amount",
            "refundable_amount",
            "refund_reason",
            "refund_processed_at",
            "refund_ref",
            "failure_code",
            "failure_message",
            "description",
            "is_test",
            "payment_date",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PaymentAdminSerializer(PaymentSerializer):
    """Adds gateway correlation data for administrators."""

    class Meta(PaymentSerializer.Meta):
        fields = PaymentSerializer.Meta.fields + ["metadata", "refund_processed_by"]
        read_only_fields = fields


def reconciliation_payload(result, admin: bool = False) -> dict:
    payment_serializer = PaymentAdminSerializer if admin else PaymentSerializer
    return {
        "outcome": result.outcome,
        "payment": payment_serializer(result.payment).data,
        "enrollment": EnrollmentSerializer(result.enrollment).data if result.enrollment else None,
        "error": (
            {
                "message": result.error.message,
                "error_code": result.error.error_code,
                "details": result.error.details,
            }
            if result.error
            else None
        ),
    }


# ---------- request bodies ----------


class IntentInitSerializer(serializers.Serializer):
    enrollment_id = serializers.IntegerField(min_value=1)
    method = serializers.ChoiceField(
        choices=[Payment.Method.INTENT_GATEWAY], default=Payment.Method.INTENT_GATEWAY
    )


class IntentConfirmSerializer(serializers.Serializer):
    transaction_ref = serializers.CharField(max_length=255)
    payment_id = serializers.IntegerField(min_value=1)


class RedirectInitSerializer(serializers.Serializer):
    enrollment_id = serializers.IntegerField(min_value=1)
    customer_phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    customer_address = serializers.CharField(max_length=255, required=False, allow_blank=True)
    customer_city = serializers.CharField(max_length=100, required=False, allow_blank=True)
    customer_country = serializers.CharField(max_length=100, required=False, allow_blank=True)


class RedirectNotificationSerializer(serializers.Serializer):
    """Fields posted by SSLCommerz to the callback and IPN endpoints."""

    tran_id = serializers.CharField(max_length=255)
    val_id = serializers.CharField(max_length=255, required=False, allow_blank=True)
    status = serializers.CharField(max_length=32, required=False, allow_blank=True)
    amount = serializers.CharField(max_length=32, required=False, allow_blank=True)
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True)
    currency_type = serializers.CharField(max_length=3, required=False, allow_blank=True)
    currency_amount = serializers.CharField(max_length=32, required=False, allow_blank=True)
    bank_tran_id = serializers.CharField(max_length=255, required=False, allow_blank=True)
    card_type = serializers.CharField(max_length=64, required=False, allow_blank=True)
    error = serializers.CharField(required=False, allow_blank=True)

    # SSLCommerz posts amounts with two to four decimals ("299.00", "299.0000").
    def validate_amount(self, value):
        return parse_amount(value)

    def validate_currency_amount(self, value):
        return parse_amount(value)

    @property
    def claimed_amount(self):
        data = self.validated_data
        if data.get("currency_type") and data.get("currency_amount") is not None:
            return data["currency_amount"]
        return data.get("amount")

    @property
    def claimed_currency(self) -> str:
        data = self.validated_data
        return (data.get("currency_type") or data.get("currency") or "").upper()


class RedirectVerifySerializer(serializers.Serializer):
    transaction_ref = serializers.CharField(max_length=255)
    validation_ref = serializers.CharField(max_length=255, required=False, allow_blank=True)


class RedirectQuerySerializer(serializers.Serializer):
    transaction_ref = serializers.CharField(max_length=255)


class RefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal("0.01"))
    reason = serializers.CharField(min_length=5, max_length=500)
