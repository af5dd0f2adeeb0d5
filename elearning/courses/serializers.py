from rest_framework import serializers

from .models import Course


class CourseSummarySerializer(serializers.ModelSerializer):
    available_seats = serializers.IntegerField(read_only=True, allow_null=True)
    is_full = serializers.BooleanField(read_only=True)

    class Meta:
        model = Course
        fields = [
            "id",
            "title",
            "price",
            "currency",
            "max_students",
            "current_students",
            "available_seats",
            "is_full",
        ]
        read_only_fields = fields
