"""HTTP layer: resilient transport and credential refresh."""

from spooled.http.auth import CredentialRefresher
from spooled.http.transport import Request, Response, Transport

__all__ = [
    "CredentialRefresher",
    "Request",
    "Response",
    "Transport",
]
