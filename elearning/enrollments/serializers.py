from rest_framework import serializers

from elearning.courses.serializers import CourseSummarySerializer

from .models import Enrollment


class EnrollmentSerializer(serializers.ModelSerializer):
    course = CourseSummarySerializer(read_only=True)
    student = serializers.PrimaryKeyRelatedField(read_only=True)

    class Meta:
        model = Enrollment
        fields = [
            "id",
            "student",
            "course",
            "status",
            "payment_amount",
            "payment_currency",
            "payment_method",
            "payment_status",
            "payment_transaction_ref",
            "payment_date",
            "refund_amount",
            "refund_date",
            "refund_reason",
            "progress",
            "enrollment_date",
            "start_date",
            "completion_date",
            "cancelled_at",
            "cancellation_reason",
        ]
        read_only_fields = fields


class EnrollmentCreateSerializer(serializers.Serializer):
    course_id = serializers.IntegerField(min_value=1)
    payment_method = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")


class EnrollmentCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")


class ProgressSerializer(serializers.Serializer):
    progress = serializers.IntegerField(min_value=0, max_value=100, required=False)
    completed_lessons = serializers.IntegerField(min_value=0, required=False)
    total_lessons = serializers.IntegerField(min_value=1, required=False)

    def validate(self, attrs):
        has_lessons = "completed_lessons" in attrs and "total_lessons" in attrs
        if "progress" not in attrs and not has_lessons:
            raise serializers.ValidationError(
                "Provide progress or completed_lessons and total_lessons."
            )
        return attrs
