"""Safe error message helpers to prevent information leakage.

In production, error messages should not expose internal architecture or
implementation details. Detailed messages are only returned when DEBUG is
enabled.
"""

from planrunner.core.config import settings


def safe_error_detail(
    internal_message: str,
    user_message: str = "An internal error occurred. Please try again later."
) -> str:
    """
    Return detailed error in debug mode, generic message in production.

    Args:
        internal_message: The detailed internal error (for logging/debugging)
        user_message: The safe message to show users in production

    Returns:
        The appropriate message based on the DEBUG setting
    """
    return internal_message if settings.DEBUG else user_message


def safe_auth_error(
    internal_message: str,
    user_message: str = "Could not validate credentials"
) -> str:
    """Return safe authentication error."""
    return internal_message if settings.DEBUG else user_message
