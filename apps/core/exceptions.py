"""
Custom exception handlers for DRF.
"""
import json
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited
from django.http import JsonResponse

from apps.core.logging import SecurityLogger, get_client_ip

logger = logging.getLogger(__name__)

# Seconds a rate-limited caller should wait before retrying login
LOGIN_RETRY_AFTER = 60


def _submitted_email(request):
    """Best-effort read of the email field from a login body."""
    data = getattr(request, 'data', None)
    if isinstance(data, dict):
        return data.get('email')
    if request.method == 'POST' and request.body:
        try:
            body = json.loads(request.body)
        except (ValueError, UnicodeDecodeError):
            return None
        if isinstance(body, dict):
            return body.get('email')
    return None


def rate_limit_error_body(request):
    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path,
        ip_address=get_client_ip(request),
        user_email=_submitted_email(request),
        limit='login'
    )
    logger.warning(
        "Rate limit exceeded",
        extra={
            'request_id': getattr(request, 'request_id', None),
            'path': request.path,
            'method': request.method,
            'retry_after': LOGIN_RETRY_AFTER,
        }
    )
    return {
        'success': False,
        'error': 'Demasiados intentos. Intente nuevamente más tarde.',
        'code': 'RATE_LIMIT_EXCEEDED',
        'retry_after': LOGIN_RETRY_AFTER,
    }


def ratelimit_view(request, exception):
    """
    View for django-ratelimit to return 429 instead of 403.

    Called when a rate limit is exceeded with block=True.
    """
    response = JsonResponse(rate_limit_error_body(request), status=429)
    response['Retry-After'] = str(LOGIN_RETRY_AFTER)
    return response


def custom_exception_handler(exc, context):
    """
    Exception handler that logs errors and returns the
    ``{"success": false, "error": ...}`` envelope.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, Ratelimited) and request is not None:
        response = Response(rate_limit_error_body(request), status=status.HTTP_429_TOO_MANY_REQUESTS)
        response['Retry-After'] = str(LOGIN_RETRY_AFTER)
        return response

    if isinstance(exc, BackOfficeException):
        logger.info(
            f"Domain error: {exc.__class__.__name__}",
            extra={
                'error_message': exc.message,
                'request_id': request_id,
                'path': request.path if request else None,
                'status_code': exc.status_code,
            }
        )
        body = {'success': False, 'error': exc.message}
        if exc.details:
            body['details'] = exc.details
        return Response(body, status=exc.status_code)

    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        return Response(
            {
                'success': False,
                'error': 'Error interno del servidor',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    logger.warning(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
            'status_code': response.status_code,
        }
    )

    detail = response.data
    if isinstance(detail, dict) and set(detail) == {'detail'}:
        detail = detail['detail']
    response.data = {'success': False, 'error': detail}
    if request_id:
        response.data['request_id'] = request_id
    return response


class BackOfficeException(Exception):
    """Base exception for back-office domain errors."""

    status_code = 400

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)
