from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging
import sys

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Only server processes are validated so that migrations, shell and
        seeding commands run without a full production configuration.
        """
        is_server = 'runserver' in sys.argv or 'gunicorn' in sys.argv[0]
        if not is_server:
            return

        self._validate_jwt_configuration()
        self._validate_security_settings()

        logger.info("Startup security validations passed")

    def _validate_jwt_configuration(self):
        """Validate the session-token signing key."""
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be set in environment variables. "
                "Generate a strong key with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}."
            )

        if jwt_secret == secret_key:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be different from SECRET_KEY."
            )

        if len(set(jwt_secret)) < 16:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY has insufficient entropy "
                "(fewer than 16 unique characters)."
            )

    def _validate_security_settings(self):
        """Refuse to serve production traffic with development keys."""
        if getattr(settings, 'DEBUG', False):
            return

        for name in ('SECRET_KEY', 'JWT_SECRET_KEY'):
            value = getattr(settings, name, '') or ''
            if value.startswith('dev-only-'):
                raise ImproperlyConfigured(
                    f"{name} is still the development default. "
                    f"Set a real value before running with DEBUG=False."
                )

        if not getattr(settings, 'SESSION_COOKIE_SECURE', False):
            logger.warning(
                "SESSION_COOKIE_SECURE is not enabled in production. "
                "Session cookies should only be sent over HTTPS."
            )
