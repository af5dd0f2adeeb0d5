from rest_framework.permissions import BasePermission

from core.exceptions import AuthorizationError

# ------------------------------------------------------------
# Helper: Ownership and admin checks shared by the enrollment
# and payment services and the DRF permission classes.
# ------------------------------------------------------------


def is_admin(user) -> bool:
    """Returns True for authenticated staff or superusers."""
    return bool(
        user
        and user.is_authenticated
        and (user.is_staff or user.is_superuser)
    )


def is_owner(user, owner_id) -> bool:
    return bool(user and user.is_authenticated and user.pk == owner_id)


def ensure_owner_or_admin(user, owner_id) -> None:
    if not (is_owner(user, owner_id) or is_admin(user)):
        raise AuthorizationError()


def ensure_admin(user) -> None:
    if not is_admin(user):
        raise AuthorizationError("Admin privileges required")


class IsAdmin(BasePermission):
    """Only staff or superusers."""

    def has_permission(self, request, view):
        return is_admin(request.user)


class IsOwnerOrAdmin(BasePermission):
    """Object access for the owning student or admins."""

    owner_field = "user_id"

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated)

    def has_object_permission(self, request, view, obj):
        if is_admin(request.user):
            return True
        owner_id = getattr(obj, "student_id", None) or getattr(obj, self.owner_field, None)
        return is_owner(request.user, owner_id)
