from cellgate.middleware.rate_limit import RateLimitMiddleware, default_client_key, rate_limit_headers

__all__ = ["RateLimitMiddleware", "default_client_key", "rate_limit_headers"]
