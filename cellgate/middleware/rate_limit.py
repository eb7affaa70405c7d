"""Rate limiting middleware for Starlette/FastAPI applications.

Calls a Limiter once per request and maps the Decision onto the usual
X-RateLimit-* headers and a 429 response. What happens when the store is
unavailable is an explicit policy of this middleware (fail-open or
fail-closed); the limiter itself never decides that.
"""

import hashlib
import math
import time
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from cellgate.core.config import settings
from cellgate.core.logging import get_log_context, get_logger
from cellgate.exceptions import InvalidSpecError, RateLimitExceededError, StoreUnavailableError
from cellgate.services.gcra.models import Decision, RateSpec
from cellgate.services.gcra.service import Limiter

logger = get_logger(__name__)

MAX_API_KEY_LENGTH = 512


def default_client_key(request: Request) -> str:
    """Get rate limit key for the request.

    Uses API key if available, otherwise falls back to IP address.
    Both are hashed with SHA-256 so raw credentials never reach the store.

    Args:
        request: Incoming request

    Returns:
        Rate limit key string
    """
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        api_key = auth[7:].strip()
        if len(api_key) > MAX_API_KEY_LENGTH:
            raise InvalidSpecError(f"API key too long (max {MAX_API_KEY_LENGTH} characters)")
        # 32 hex chars (128 bits) for collision resistance
        key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
        return f"apikey:{key_hash}"

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else "unknown"

    ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
    return f"ip:{ip_hash}"


def rate_limit_headers(decision: Decision) -> dict[str, str]:
    """Build response headers describing a decision."""
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(max(decision.remaining, 0)),
        "X-RateLimit-Reset": str(math.ceil(time.time() + decision.reset_after)),
    }
    if not decision.allowed and decision.satisfiable:
        headers["Retry-After"] = str(max(1, math.ceil(decision.retry_after)))
    return headers


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    Rate limits are applied per API key if available, otherwise per IP,
    unless a custom key_func is given.
    """

    def __init__(
        self,
        app,
        limiter: Limiter,
        spec: Optional[RateSpec] = None,
        key_func: Optional[Callable[[Request], str]] = None,
        fail_closed: Optional[bool] = None,
        exempt_paths: Iterable[str] = (),
    ):
        """Initialize middleware.

        Args:
            app: ASGI application
            limiter: Limiter shared by all requests
            spec: Rate applied to every request (defaults to settings)
            key_func: Maps a request to its rate limit key
            fail_closed: Reject requests when the store is unavailable
                (defaults to settings.rate_limit_fail_closed)
            exempt_paths: Paths that bypass rate limiting
        """
        super().__init__(app)
        self.limiter = limiter
        self.spec = spec or settings.default_rate_spec()
        self.key_func = key_func or default_client_key
        self.fail_closed = settings.rate_limit_fail_closed if fail_closed is None else fail_closed
        self.exempt_paths = frozenset(exempt_paths)

    def _handle_store_failure(self, request: Request, key: str, error: StoreUnavailableError) -> Optional[Response]:
        """Apply the configured fail-open/fail-closed policy.

        Returns:
            A 503 response when failing closed, None to let the request through
        """
        context = get_log_context(rate_key=key, path=request.url.path, method=request.method)
        if self.fail_closed:
            logger.warning(f"Rate limiting fail-closed: {error}. Request denied.", extra=context)
            return JSONResponse(
                status_code=error.status_code,
                content={"error": "rate_limit_unavailable", "message": "Rate limiter unavailable."},
            )
        logger.warning(
            f"Rate limiting fail-open: {error}. Request allowed without rate limit check.",
            extra=context,
        )
        return None

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        try:
            key = self.key_func(request)
        except InvalidSpecError as e:
            return JSONResponse(status_code=e.status_code, content={"error": "bad_request", "message": e.message})

        try:
            decision = await self.limiter.allow(key, self.spec)
        except StoreUnavailableError as e:
            failure = self._handle_store_failure(request, key, e)
            if failure is not None:
                return failure
            return await call_next(request)

        headers = rate_limit_headers(decision)
        if not decision.allowed:
            error = RateLimitExceededError(decision)
            return JSONResponse(status_code=error.status_code, content=error.to_response(), headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response
