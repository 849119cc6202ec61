"""maxmux: FastAPI application entry point.

A credential-substituting reverse proxy: clients authenticate with virtual
keys, the gateway swaps in one shared OAuth token and streams the upstream
response back unmodified.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from maxmux.config.settings import get_settings
from maxmux.errors import AuthenticationError, UpstreamError, error_response
from maxmux.logging.audit import (
    generate_request_id,
    get_audit_logger,
    mask_token,
    request_id_var,
    setup_logging,
)
from maxmux.proxy.handler import close_gateway, get_gateway
from maxmux.security.auth import get_authenticator, verify_virtual_key

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks. A ConfigurationError aborts startup."""
    settings = get_settings()
    setup_logging(settings)
    get_audit_logger().info(
        "Gateway started",
        extra={"audit_data": {
            "port": settings.port,
            "upstream": settings.upstream,
            "virtual_keys": len(get_authenticator()),
            "oauth_token": mask_token(settings.oauth_token),
            "version": VERSION,
        }},
    )
    yield
    await close_gateway()
    get_audit_logger().info("Gateway stopped")


app = FastAPI(
    title="maxmux",
    description="Virtual-key reverse proxy sharing one upstream credential",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    return error_response(exc.status_code, exc.message, exc.error_type)


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    return error_response(exc.status_code, exc.message, exc.error_type)


async def proxy(request: Request) -> Response:
    """Forward every authenticated request to the upstream.

    Pipeline: Auth -> Rewrite -> Send -> Relay stream -> Log
    """
    request_id_var.set(generate_request_id())
    await verify_virtual_key(request)

    logger = get_audit_logger()
    logger.info(
        "Forwarding request",
        extra={"audit_data": {"method": request.method, "path": request.url.path}},
    )
    for name, value in request.headers.items():
        if name == "authorization":
            value = mask_token(value)
        logger.debug("Request header", extra={"audit_data": {"header": name, "value": value}})

    raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
    has_body = "content-length" in request.headers or "transfer-encoding" in request.headers
    return await get_gateway().forward(
        method=request.method,
        raw_path=raw_path.split(b"?", 1)[0],
        query_string=request.scope.get("query_string", b""),
        headers=request.headers.raw,
        body=request.stream() if has_body else None,
    )


class ProxyEndpoint:
    """ASGI endpoint for the catch-all route.

    Starlette restricts plain function endpoints to GET; an ASGI callable
    with no method list is matched for every method, extension ones included.
    """

    async def __call__(self, scope, receive, send) -> None:
        response = await proxy(Request(scope, receive))
        await response(scope, receive, send)


app.add_route("/{path:path}", ProxyEndpoint())
