# lab_core/views_base.py
from rest_framework.views import APIView

from .signals import set_current_user


class CurrentUserMixin:
    """
    Hand the DRF-authenticated user (JWT, API key, session) to the audit
    signals for the rest of the request.
    """

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        user = getattr(request, "user", None)
        set_current_user(user if user is not None and user.is_authenticated else None)


class LabAPIView(CurrentUserMixin, APIView):
    pass
