"""
Error taxonomy for the shadow pacing API.

Each error carries the HTTP status it maps to; main.py registers a single
handler that renders {"error": message}. Rate-limit rejections are not
errors: they travel as a `reason` on a normal 200 response.
"""

from fastapi import status


class ShadowError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "Server error"

    def __init__(self, message: str = ""):
        self.message = message or self.public_message
        super().__init__(self.message)

    @property
    def client_message(self) -> str:
        return self.message


class AuthenticationError(ShadowError):
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Unauthorized"


class AuthorizationError(ShadowError):
    status_code = status.HTTP_403_FORBIDDEN
    public_message = "Forbidden"


class ValidationError(ShadowError):
    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Invalid request"


class StoreError(ShadowError):
    """Underlying data-service failure. Details are logged, never returned."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message = "Server error"

    @property
    def client_message(self) -> str:
        return self.public_message
