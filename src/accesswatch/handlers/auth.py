"""Caller identity for API Gateway events."""

import logging
from typing import Any, Dict

from accesswatch.errors import AccessWatchError

logger = logging.getLogger(__name__)


class AuthenticationError(AccessWatchError):
    """Raised when a request carries no verified identity."""


def get_authenticated_user_id(event: Dict[str, Any]) -> str:
    """Extract the caller's user id from verified authorizer claims.

    Claims are populated by API Gateway after the Cognito authorizer has
    validated the token. Client-supplied user ids are never trusted.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User id from the 'sub' claim (or 'cognito:username')

    Raises:
        AuthenticationError: If no verified identity is present
    """
    authorizer = (event.get("requestContext") or {}).get("authorizer") or {}

    claims = authorizer.get("claims") or {}
    if not claims:
        # HTTP API JWT authorizer
        claims = (authorizer.get("jwt") or {}).get("claims") or {}

    user_id = claims.get("sub") or claims.get("cognito:username")
    if not user_id:
        logger.warning("Request without authenticated identity")
        raise AuthenticationError("No authenticated user in request context")
    return user_id
