"""
RequestContext Middleware - tags every HTTP request for tracing.

Adds to request.state:
- request_id: taken from an incoming X-Request-ID header, else a new UUID
- ip_address: client IP (X-Forwarded-For only from trusted proxies)

The request id is echoed back in the X-Request-ID response header and read
by the request timing log in app.main.
"""

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = extract_client_ip(request)

        logger.debug(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            ip_address=request.state.ip_address,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def extract_client_ip(request: Request) -> str | None:
    """
    Client address, honouring X-Forwarded-For only when
    TRUST_X_FORWARDED_FOR is on and the peer is a trusted proxy.
    """
    direct_ip = request.client.host if request.client else None
    if not settings.TRUST_X_FORWARDED_FOR or direct_ip not in settings.TRUSTED_PROXY_IPS:
        return direct_ip

    # "client, proxy1, proxy2": first entry is the original client
    forwarded_for = request.headers.get("x-forwarded-for")
    if not forwarded_for:
        return direct_ip
    return forwarded_for.split(",")[0].strip()
