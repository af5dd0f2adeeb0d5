"""
Enrollment endpoints.

- POST /api/elearning/enrollments/                 enroll in a course
- GET  /api/elearning/enrollments/mine/            own enrollments
- GET  /api/elearning/enrollments/<id>/            owner or admin
- POST /api/elearning/enrollments/<id>/cancel/     owner or admin
- PUT  /api/elearning/enrollments/<id>/progress/   owner or admin
- POST /api/elearning/enrollments/<id>/complete/   admin
"""

from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import Enrollment
from .serializers import (
    EnrollmentCancelSerializer,
    EnrollmentCreateSerializer,
    EnrollmentSerializer,
    ProgressSerializer,
)
from .services import EnrollmentService


class EnrollmentCreateView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = EnrollmentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        enrollment = EnrollmentService().create_enrollment(
            request.user,
            serializer.validated_data["course_id"],
            serializer.validated_data["payment_method"],
        )
        return Response(EnrollmentSerializer(enrollment).data, status=status.HTTP_201_CREATED)


class MyEnrollmentsView(generics.ListAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = EnrollmentSerializer

    def get_queryset(self):
        queryset = Enrollment.objects.select_related("course").filter(student=self.request.user)
        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset


class EnrollmentDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        enrollment = EnrollmentService().get_enrollment(pk, request.user)
        return Response(EnrollmentSerializer(enrollment).data)


class EnrollmentCancelView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        serializer = EnrollmentCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        enrollment = EnrollmentService().cancel_enrollment(
            pk, request.user, reason=serializer.validated_data["reason"]
        )
        return Response(EnrollmentSerializer(enrollment).data)


class EnrollmentProgressView(APIView):
    permission_classes = [IsAuthenticated]

    def put(self, request, pk):
        serializer = ProgressSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        enrollment = EnrollmentService().update_progress(pk, request.user, **serializer.validated_data)
        return Response(EnrollmentSerializer(enrollment).data)


class EnrollmentCompleteView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        enrollment = EnrollmentService().complete_enrollment(pk, request.user)
        return Response(EnrollmentSerializer(enrollment).data)
