# lab_core/authentication.py
from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication

from lab_core.services.api_keys import authenticate_key


class ApiKeyAuthentication(BaseAuthentication):
    """
    X-API-Key: <prefix>.<secret>

    Requests without the header fall through to the other authenticators.
    request.auth is the ApiKey row.
    """

    header = "X-API-Key"

    def authenticate(self, request):
        raw = request.headers.get(self.header)
        if not raw:
            return None

        key = authenticate_key(raw)
        if key is None:
            raise exceptions.AuthenticationFailed("Invalid or revoked API key.")
        if not key.user.is_active:
            raise exceptions.AuthenticationFailed("API key owner is inactive.")

        return key.user, key

    def authenticate_header(self, request):
        return self.header
