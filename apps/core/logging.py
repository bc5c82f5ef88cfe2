"""
Custom logging formatters for structured JSON logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(token|secret|password|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )
    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9\-_.]+')

    # Field names whose values are never logged verbatim
    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd',
        'token', 'access_token', 'session_token', 'authorization',
        'secret', 'secret_key', 'jwt_secret_key',
    }

    # Field names holding email addresses; partially masked
    EMAIL_FIELDS = {'email', 'user_email', 'email_address'}

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text, keeping the first character and domain."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask bearer tokens and key=value secrets in text."""
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub('Bearer ********', text)
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            lowered = key.lower()
            if lowered in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value else value
            elif lowered in cls.EMAIL_FIELDS:
                masked[key] = cls.mask_email(value)
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict)
                    else cls.mask_text(item) if isinstance(item, str)
                    else item
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value

        return masked


# LogRecord attributes that are never copied as extra fields
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'taskName', 'exc_info', 'exc_text', 'stack_info',
    'request_id', 'organization_id',
])


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and organization_id from extra fields if available.
    Automatically masks sensitive PII data.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id

        if getattr(record, 'organization_id', None):
            log_data['organization_id'] = str(record.organization_id)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if key.lower() in PIIMasker.SENSITIVE_FIELDS:
                log_data[key] = '********'
                continue
            if key.lower() in PIIMasker.EMAIL_FIELDS:
                value = PIIMasker.mask_email(value)
            elif isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging for security events.

    Every event goes to the ``security`` logger with structured context
    (event type, timestamp, IP address, user and organization where known).
    Events listed in ``CRITICAL_EVENTS`` are also sent to Sentry.
    """

    CRITICAL_EVENTS = {
        'account_locked',
        'invalid_session_token',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'failed_login', 'permission_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (ip_address, user_email, organization_id, etc.)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_failed_login(email: str, ip_address: str, user_agent: str = None, reason: str = None):
        """
        Log a failed login attempt.

        Args:
            email: Email address used in login attempt
            ip_address: IP address of the request
            user_agent: User agent string (optional)
            reason: Reason for failure (optional)
        """
        SecurityLogger.log_event(
            'failed_login',
            level='warning',
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            reason=reason
        )

    @staticmethod
    def log_account_locked(email: str, user_id: str, locked_until: str, ip_address: str = None):
        """Log an account lockout after too many failed logins."""
        SecurityLogger.log_event(
            'account_locked',
            level='error',
            email=email,
            user_id=user_id,
            locked_until=locked_until,
            ip_address=ip_address
        )

    @staticmethod
    def log_permission_denied(principal, module: str, action: str, ip_address: str = None, path: str = None):
        """
        Log a permission denial on an API operation.

        Args:
            principal: Resolved principal (may be None for anonymous callers)
            module: Module slug that was checked
            action: Action that was required
            ip_address: IP address of the request
            path: Request path
        """
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            user_id=str(principal.user_id) if principal else None,
            user_email=principal.email if principal else None,
            organization_id=str(principal.organization_id) if principal and principal.organization_id else None,
            roles=list(principal.roles) if principal else [],
            required_permission=f"{module}:{action}",
            ip_address=ip_address,
            path=path
        )

    @staticmethod
    def log_route_denied(path: str, reason: str, role: str = None, organization_name: str = None,
                         ip_address: str = None):
        """
        Log a page navigation blocked by the route middleware.

        Args:
            path: Requested page path
            reason: 'missing_read:<module>' or 'default_organization'
            role: Role archetype read from the session or cookie
            organization_name: Organization name presented by the caller
            ip_address: IP address of the request
        """
        SecurityLogger.log_event(
            'route_denied',
            level='info',
            path=path,
            reason=reason,
            role=role,
            organization_name=organization_name,
            ip_address=ip_address
        )

    @staticmethod
    def log_invalid_session_token(reason: str, ip_address: str = None, path: str = None):
        """Log a session token that failed signature or claim validation."""
        SecurityLogger.log_event(
            'invalid_session_token',
            level='warning',
            reason=reason,
            ip_address=ip_address,
            path=path
        )

    @staticmethod
    def log_rate_limit_exceeded(
        endpoint: str,
        ip_address: str,
        user_email: str = None,
        limit: str = None
    ):
        """
        Log a rate limit violation.

        Args:
            endpoint: API endpoint that was rate limited
            ip_address: IP address of the request
            user_email: Email submitted with the request (if any)
            limit: Rate limit that was exceeded (e.g., '5/m')
        """
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            user_email=user_email,
            limit=limit
        )


def get_client_ip(request):
    """Return the caller IP, honouring the first X-Forwarded-For hop."""
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')
