"""
Domain errors and the DRF exception handler.

Services raise the FramezError subclasses below and never build HTTP
responses themselves. custom_exception_handler turns them into a
consistent error format at the API edge.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)


class FramezError(Exception):
    """Base class for errors surfaced to the caller as-is."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'error'
    default_message = 'Request could not be completed.'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)


class Unauthenticated(FramezError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = 'unauthenticated'
    default_message = 'Not authenticated.'


class Forbidden(FramezError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'forbidden'
    default_message = 'Not authorized.'


class NotFound(FramezError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'not_found'
    default_message = 'Not found.'


class Conflict(FramezError):
    status_code = status.HTTP_409_CONFLICT
    code = 'conflict'
    default_message = 'Already in use.'


class InvalidInput(FramezError):
    code = 'invalid_input'
    default_message = 'Invalid input.'


class InvalidOperation(InvalidInput):
    """An operation that is well-formed but never allowed (e.g. self-follow)."""
    code = 'invalid_operation'
    default_message = 'Operation not allowed.'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Converts domain errors to their status code
    2. Lets DRF handle its own exceptions, wrapping the body
    3. Logs everything unexpected
    """
    if isinstance(exc, FramezError):
        return Response(
            {'error': str(exc), 'code': exc.code},
            status=exc.status_code
        )

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    # If DRF handled it, enhance the response
    if response is not None:
        # Ensure consistent format
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    # Handle exceptions that DRF doesn't handle
    if isinstance(exc, IntegrityError):
        logger.warning(f"IntegrityError: {exc}")
        return Response(
            {'error': 'Data integrity error. This may be a duplicate entry.', 'code': Conflict.code},
            status=status.HTTP_409_CONFLICT
        )

    # Log unexpected exceptions
    logger.exception(f"Unhandled exception: {exc}")

    # Return generic error for unexpected exceptions
    return Response(
        {'error': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
