"""FastAPI dependency that applies the rate governor to a route.

Routes that trigger expensive work declare ``Depends(enforce_rate_limit)``.
The dependency derives the client key from the request headers, counts the
call, copies the ``X-RateLimit-*`` headers onto the response, and raises a 429
when the caller is over budget.

The admission result is also kept on ``request.state`` so that
:func:`http_exception_with_rate_limit_headers` can add the same headers to
error responses raised after admission (400, 404, 502, ...).
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, Response
from fastapi.exception_handlers import http_exception_handler
from starlette.exceptions import HTTPException as StarletteHTTPException

from imageforge.core.rate_limit import RateGovernor, RateLimitResult, client_key_from_headers

logger = logging.getLogger(__name__)


def enforce_rate_limit(request: Request, response: Response) -> RateLimitResult:
    """Admit the request or reject it with ``429 Too Many Requests``.

    Args:
        request: Incoming request; the governor lives on ``app.state``.
        response: Outgoing response the rate limit headers are added to.

    Returns:
        The admission result for an allowed request.

    Raises:
        HTTPException: 429 with the rate limit headers and an error detail
            carrying ``limit``, ``remaining`` and ``reset``.
    """
    governor: RateGovernor = request.app.state.rate_governor
    client_key = client_key_from_headers(request.headers)
    result = governor.check(client_key)
    request.state.rate_limit = result

    headers = result.headers()
    if not result.allowed:
        logger.info(f"Rate limit exceeded for client {client_key}")
        raise HTTPException(
            status_code=429,
            detail={
                "code": "RATE_LIMIT_EXCEEDED",
                "message": "Rate limit exceeded. Please try again later.",
                "limit": result.limit,
                "remaining": result.remaining,
                "reset": result.reset_seconds,
            },
            headers=headers,
        )

    response.headers.update(headers)
    return result


async def http_exception_with_rate_limit_headers(
    request: Request, exc: StarletteHTTPException
) -> Response:
    """Render an ``HTTPException`` and add the caller's rate limit headers.

    Requests that never passed through :func:`enforce_rate_limit` are
    rendered unchanged.
    """
    response = await http_exception_handler(request, exc)
    result: RateLimitResult | None = getattr(request.state, "rate_limit", None)
    if result is not None:
        for name, value in result.headers().items():
            response.headers.setdefault(name, value)
    return response
