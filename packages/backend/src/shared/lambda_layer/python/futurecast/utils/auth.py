"""
Authentication utilities for extracting user information from API Gateway events.
"""
from typing import Dict, Any, Optional
from aws_lambda_powertools import Logger

logger = Logger()


def get_user_claims(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return the Cognito claims API Gateway placed on the request context.

    Args:
        event: API Gateway event dictionary

    Returns:
        Dictionary of JWT claims, empty when the request is unauthenticated
    """
    request_context = event.get("requestContext") or {}
    authorizer = request_context.get("authorizer") or {}
    return authorizer.get("claims") or {}


def extract_user_id_from_event(event: Dict[str, Any]) -> Optional[str]:
    """
    Extract user_id from API Gateway event context (Cognito JWT).

    When API Gateway uses Cognito authorization, it validates the JWT token
    and provides the user claims in the request context.

    Args:
        event: API Gateway event dictionary

    Returns:
        User ID (sub claim) from the JWT token, or None if not found
    """
    user_id = get_user_claims(event).get("sub")
    if not user_id:
        logger.warning("No user_id found in JWT claims")
        return None
    return user_id


def extract_user_email_from_event(event: Dict[str, Any]) -> Optional[str]:
    email = get_user_claims(event).get("email")
    if not email:
        logger.warning("No email found in JWT claims")
        return None
    return email
