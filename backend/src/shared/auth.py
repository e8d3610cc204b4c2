"""
Authentication utilities for extracting the caller from Cognito tokens.
"""
from typing import Optional
from .errors import Unauthorized, Forbidden
from .models import Identity, Role


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    try:
        return event['requestContext']['authorizer']['claims']['sub']
    except (KeyError, TypeError):
        return None


def get_user_email(event: dict) -> Optional[str]:
    """Extract user email from Cognito claims."""
    try:
        return event['requestContext']['authorizer']['claims']['email']
    except (KeyError, TypeError):
        return None


def get_user_groups(event: dict) -> list:
    """Extract user groups (worker, reviewer, admin) from Cognito claims."""
    try:
        groups = event['requestContext']['authorizer']['claims'].get('cognito:groups', '')
        if isinstance(groups, str):
            return [g.strip() for g in groups.split(',') if g.strip()] if groups else []
        return groups or []
    except (KeyError, TypeError, AttributeError):
        return []


def authenticated(event: dict) -> Identity:
    """
    Resolve the calling worker.

    Raises:
        Unauthorized: no Cognito subject on the request
    """
    sub = get_user_sub(event)
    if not sub:
        raise Unauthorized()
    return Identity(id=sub, roles=get_user_groups(event), email=get_user_email(event))


def require_reviewer(event: dict) -> Identity:
    """Caller must be in the reviewer or admin group."""
    identity = authenticated(event)
    if not identity.has_any(Role.REVIEWER, Role.ADMIN):
        raise Forbidden()
    return identity


def require_admin(event: dict) -> Identity:
    """Caller must be in the admin group."""
    identity = authenticated(event)
    if not identity.has_any(Role.ADMIN):
        raise Forbidden()
    return identity
