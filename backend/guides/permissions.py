from rest_framework.permissions import BasePermission


class IsGuide(BasePermission):
    """
    Allow access only to users with a guide profile.
    Superusers automatically pass.
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.user.is_superuser:
            return True
        return hasattr(request.user, "guide_profile")
