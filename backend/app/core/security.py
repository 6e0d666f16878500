"""Security and request context dependencies."""

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from app.core.config import settings

logger = logging.getLogger(__name__)

# API Key header security scheme
api_key_header = APIKeyHeader(
    name=settings.api_key_header,
    auto_error=False,  # Don't auto-error, we handle it manually
)


def verify_api_key(
    api_key: Annotated[str | None, Security(api_key_header)],
) -> str | None:
    """Verify API key if authentication is enabled.

    When auth is enabled:
    - Missing API key returns 401
    - Invalid API key returns 403

    When auth is disabled:
    - Returns None (no authentication required)

    Args:
        api_key: The API key from the request header

    Returns:
        The validated API key or None if auth disabled

    Raises:
        HTTPException: 401 if missing key, 403 if invalid key
    """
    if not settings.auth_enabled:
        return None

    if api_key is None:
        logger.warning("Missing API key in request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if api_key != settings.api_key:
        logger.warning("Invalid API key attempt")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# Dependency for protected endpoints
RequireAuth = Annotated[str | None, Depends(verify_api_key)]


class OrganizationContext:
    """Organization and acting user for the current request.

    Every revenue record is scoped to one organization; lookups for a record
    owned by a different organization behave as if the record did not exist.
    """

    def __init__(self, organization_id: str, user_id: str | None = None):
        """Initialize organization context.

        Args:
            organization_id: Organization the request acts on
            user_id: User performing the request, if known
        """
        self.organization_id = organization_id
        self.user_id = user_id

    def owns(self, organization_id: str | None) -> bool:
        """Check whether a record's organization matches this context."""
        return organization_id == self.organization_id


def get_organization_context(
    _auth: RequireAuth,
    x_organization_id: Annotated[str | None, Header()] = None,
    x_user_id: Annotated[str | None, Header()] = None,
) -> OrganizationContext:
    """Build the organization context from request headers.

    Raises:
        HTTPException: 400 if the organization header is missing
    """
    if not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing {settings.organization_header} header",
        )
    return OrganizationContext(organization_id=x_organization_id, user_id=x_user_id)


RequireOrganization = Annotated[OrganizationContext, Depends(get_organization_context)]
