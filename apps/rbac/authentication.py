"""
Custom DRF authentication classes.
"""
import logging
from rest_framework.authentication import BaseAuthentication

from apps.rbac.permissions import Denial

logger = logging.getLogger(__name__)


class GateAuthentication(BaseAuthentication):
    """
    DRF authentication class backed by the authorization gate.

    Sets ``request.user`` to the resolved ``Principal`` and
    ``request.auth`` to the credential path it came from
    (``session`` or ``fallback_cookie``). Requests without credentials stay
    anonymous; permission classes decide whether that is acceptable.
    """

    def get_gate(self):
        # Imported here: DRF loads this class while rest_framework.views is still
        # initializing, and the gate depends on the service layer.
        from apps.rbac.gate import AuthorizationGate
        return AuthorizationGate()

    def authenticate(self, request):
        """
        Returns:
            tuple: (principal, source) if resolved, None otherwise
        """
        django_request = getattr(request, '_request', request)
        result = self.get_gate().resolve(django_request)
        if isinstance(result, Denial):
            return None

        logger.debug(
            "Principal resolved",
            extra={
                'user_id': result.user_id,
                'source': result.source,
                'request_id': getattr(django_request, 'request_id', None),
            }
        )
        return (result, result.source)

    def authenticate_header(self, request):
        # Makes DRF answer 401 rather than 403 for anonymous callers.
        return 'Bearer realm="api"'
