"""Outbound request rewriting.

Pure functions: given the inbound destination and headers plus the shared
OAuth token, produce what is sent upstream. Nothing here touches the network
or the settings, so the rewrite rules can be tested in isolation.
"""

from collections.abc import Iterable

import httpx

OAUTH_BETA_FLAG = "oauth-2025-04-20"

# Connection-level headers recomputed by the transport for each hop.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset({
    "connection",
    "host",
    "keep-alive",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

HeaderItems = httpx.Headers | Iterable[tuple[bytes, bytes]] | Iterable[tuple[str, str]]


def build_upstream_url(upstream: httpx.URL, raw_path: bytes, query_string: bytes = b"") -> httpx.URL:
    """Point the inbound path and query at the upstream's scheme, host and port."""
    target = raw_path or b"/"
    if query_string:
        target += b"?" + query_string
    return upstream.copy_with(raw_path=target)


def merge_beta_flags(existing: list[str]) -> str:
    """Append the OAuth capability flag without dropping flags the client asked for."""
    values = [v for v in existing if v]
    if not values:
        return OAUTH_BETA_FLAG
    return ",".join(values) + "," + OAUTH_BETA_FLAG


def rewrite_headers(headers: HeaderItems, credential: str) -> httpx.Headers:
    """Return the outbound header set. The inbound headers are left untouched."""
    outbound = httpx.Headers([
        (name, value)
        for name, value in httpx.Headers(headers).raw
        if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
    ])

    # The virtual key is replaced, never forwarded.
    outbound["Authorization"] = f"Bearer {credential}"

    # Upstream rejects requests carrying both auth schemes.
    if "X-Api-Key" in outbound:
        del outbound["X-Api-Key"]

    outbound["Anthropic-Beta"] = merge_beta_flags(outbound.get_list("Anthropic-Beta"))
    outbound["Anthropic-Dangerous-Direct-Browser-Access"] = "true"
    return outbound
