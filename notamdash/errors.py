"""Error taxonomy for the NOTAM dashboard."""
from typing import Optional, Type


class NotamDashError(Exception):
    """Base class for all dashboard errors."""


class GatewayError(NotamDashError):
    """
    Failure reported by a NOTAM gateway call.

    Carries the upstream HTTP status when there was one, so the
    orchestrator can tell auth failures from transport failures.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransportError(GatewayError):
    """Network or remote failure that is not auth related. Retryable."""


class AuthError(GatewayError):
    """Upstream rejected the credential (401/403)."""


class NotFoundError(GatewayError):
    """Detail fetch for an id the upstream no longer knows about."""


class MapStateError(NotamDashError):
    """Map handle used outside of its lifecycle (caller error)."""


def classify_http_status(status: Optional[int], not_found_ok: bool = False) -> Type[GatewayError]:
    """
    Map an HTTP status code to the gateway error class to raise.

    Args:
        status: HTTP status, or None for failures without a response
        not_found_ok: Whether 404 should map to NotFoundError (detail fetches)

    Returns:
        GatewayError subclass
    """
    if status in (401, 403):
        return AuthError
    if status == 404 and not_found_ok:
        return NotFoundError
    return TransportError
