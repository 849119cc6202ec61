"""Forwarding gateway: sends rewritten requests upstream and relays the response.

The upstream response body is relayed chunk by chunk as it arrives. Nothing
is buffered, so server-sent event streams reach the caller incrementally.
"""

from collections.abc import AsyncIterator

import anyio
import httpx
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from maxmux.config.settings import get_settings
from maxmux.errors import StreamingInterruptionError, UpstreamError
from maxmux.logging.audit import RequestTimer, get_audit_logger, mask_token
from maxmux.proxy.rewrite import (
    HOP_BY_HOP_HEADERS,
    HeaderItems,
    build_upstream_url,
    rewrite_headers,
)


class ForwardingGateway:
    """Owns the upstream target, the shared credential and one pooled HTTP client."""

    def __init__(
        self,
        upstream: str,
        credential: str,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.upstream = httpx.URL(upstream)
        self._credential = credential
        self._timeout = timeout or httpx.Timeout(None, connect=10.0)
        self._client = httpx.AsyncClient(
            timeout=self._timeout,
            transport=transport,
            follow_redirects=False,
        )

    async def forward(
        self,
        method: str,
        raw_path: bytes,
        query_string: bytes,
        headers: HeaderItems,
        body: AsyncIterator[bytes] | None = None,
    ) -> StreamingResponse:
        """Send one authenticated request upstream and return the relayed response.

        Raises UpstreamError if no response could be obtained.
        """
        logger = get_audit_logger()
        timer = RequestTimer()
        path = raw_path.decode("latin-1")

        url = build_upstream_url(self.upstream, raw_path, query_string)
        outbound_headers = rewrite_headers(headers, self._credential)
        logger.debug(
            "Injected oauth headers",
            extra={"audit_data": {
                "authorization": f"Bearer {mask_token(self._credential)}",
                "anthropic_beta": outbound_headers.get("Anthropic-Beta"),
            }},
        )

        # Built directly so the client's default User-Agent, Accept and
        # Accept-Encoding headers and its cookie jar never reach the upstream.
        request = httpx.Request(
            method,
            url,
            headers=outbound_headers,
            content=body,
            extensions={"timeout": self._timeout.as_dict()},
        )
        try:
            upstream_response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error(
                "Upstream error",
                extra={"audit_data": {
                    "method": method,
                    "path": path,
                    "error": repr(exc),
                    "duration_ms": timer.stop(),
                }},
            )
            raise UpstreamError(str(exc)) from exc

        response = StreamingResponse(
            self._relay(upstream_response, method, path, timer),
            status_code=upstream_response.status_code,
            background=BackgroundTask(upstream_response.aclose),
        )
        response.raw_headers = [
            (name, value)
            for name, value in upstream_response.headers.raw
            if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        ]
        return response

    async def _relay(
        self,
        upstream_response: httpx.Response,
        method: str,
        path: str,
        timer: RequestTimer,
    ) -> AsyncIterator[bytes]:
        """Yield upstream bytes in arrival order, closing the upstream on any exit."""
        logger = get_audit_logger()
        finished = False
        try:
            async for chunk in upstream_response.aiter_raw():
                yield chunk
            finished = True
        except httpx.HTTPError as exc:
            logger.warning(
                "Upstream stream interrupted",
                extra={"audit_data": {"method": method, "path": path, "error": repr(exc)}},
            )
            raise StreamingInterruptionError(str(exc)) from exc
        finally:
            # Runs on caller disconnect too; the close must survive the cancellation.
            with anyio.CancelScope(shield=True):
                await upstream_response.aclose()
            logger.info(
                "Request completed" if finished else "Request aborted",
                extra={"audit_data": {
                    "method": method,
                    "path": path,
                    "status": upstream_response.status_code,
                    "duration_ms": timer.stop(),
                }},
            )

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()


_gateway: ForwardingGateway | None = None


def get_gateway() -> ForwardingGateway:
    """Get or create the process-wide gateway from settings."""
    global _gateway
    if _gateway is None:
        settings = get_settings()
        _gateway = ForwardingGateway(
            upstream=settings.upstream,
            credential=settings.oauth_token,
            timeout=httpx.Timeout(
                settings.upstream_read_timeout,
                connect=settings.upstream_connect_timeout,
            ),
        )
    return _gateway


async def close_gateway() -> None:
    """Gracefully close the upstream connection pool on shutdown."""
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
