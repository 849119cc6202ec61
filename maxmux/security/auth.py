"""Virtual key authentication for gateway clients.

Clients present `Authorization: Bearer <virtual-key>`. The key is checked
against the configured allow-list; it identifies nothing beyond membership
and is never forwarded upstream.
"""

from collections.abc import Iterable
from functools import lru_cache

from fastapi import Request

from maxmux.config.settings import get_settings
from maxmux.errors import AuthenticationError
from maxmux.logging.audit import get_audit_logger

BEARER_PREFIX = "Bearer "


def extract_virtual_key(authorization: str | None) -> str:
    """Return the bearer value, or "" when the header is missing or not a bearer token."""
    if authorization and authorization.startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):]
    return ""


class Authenticator:
    """Read-only membership check over the accepted virtual keys.

    The key set is frozen at construction, so concurrent lookups need no
    locking. Comparison is an exact, case-sensitive set lookup.
    """

    def __init__(self, virtual_keys: Iterable[str]):
        self._keys = frozenset(k for k in virtual_keys if k)

    def __len__(self) -> int:
        return len(self._keys)

    def check(self, authorization: str | None) -> bool:
        return extract_virtual_key(authorization) in self._keys


@lru_cache
def get_authenticator() -> Authenticator:
    return Authenticator(get_settings().virtual_key_set)


async def verify_virtual_key(request: Request) -> None:
    """Reject the request unless it carries an accepted virtual key."""
    if get_authenticator().check(request.headers.get("authorization")):
        return

    get_audit_logger().warning(
        "Rejected request: invalid virtual key",
        extra={"audit_data": {
            "method": request.method,
            "path": request.url.path,
            "remote": request.client.host if request.client else "unknown",
        }},
    )
    raise AuthenticationError()
