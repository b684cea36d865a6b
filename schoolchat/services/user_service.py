# schoolchat/services/user_service.py
"""
User service: loads the signed-in user's profile from the school API.
"""

from schoolchat.infrastructure.observability.logging import get_logger
from schoolchat.models.api.envelope import ApiErrorResponse, BlobResponse
from schoolchat.models.api.school_payloads import ProfileData
from schoolchat.models.domain.user_domain import SessionUser
from schoolchat.services.api_client import SchoolApiClient, school_api_client

logger = get_logger(__name__)

PROFILE_ENDPOINT = "/api/users/profile"


class UserServiceError(Exception):
    """Custom exception for profile lookup failures."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


async def get_user_profile(token: str, client: SchoolApiClient | None = None) -> SessionUser:
    """
    Fetch the profile behind a bearer token.

    Raises:
        UserServiceError: if the token is rejected or the profile is malformed
    """
    api = client or school_api_client
    result = await api.get(PROFILE_ENDPOINT, token)

    if isinstance(result, ApiErrorResponse):
        logger.warning("Profile lookup failed", status_code=result.status_code, message=result.message)
        raise UserServiceError(result.message, status_code=result.status_code)

    if isinstance(result, BlobResponse) or not isinstance(result.data, dict):
        raise UserServiceError("Unexpected response format from server", status_code=502)

    try:
        profile = ProfileData.model_validate(result.data)
    except ValueError as e:
        logger.error("Invalid profile payload", error=str(e))
        raise UserServiceError("Invalid response format from server", status_code=502) from e

    return SessionUser.model_validate(profile.user.model_dump())
