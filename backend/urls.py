"""
Root URL configuration.

- admin/              Django admin (Jazzmin)
- api/token/          JWT obtain / refresh (simplejwt)
- api/elearning/      Enrollment and payment API
"""

from django.contrib import admin
from django.urls import include, path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("api/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("api/elearning/", include("elearning.urls")),
]
