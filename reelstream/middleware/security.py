"""
Security middleware for the ReelStream API
Adds security headers to every response
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

DEFAULT_CSP = [
    "default-src 'self'",
    # Swagger UI loads its bundle from jsdelivr
    "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
    "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
    "img-src 'self' https: data:",
    "media-src 'self' https:",
    "frame-ancestors 'none'",
]


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers (XSS, CSP, HSTS, etc.)"""

    def __init__(self, app, csp_directives: Optional[List[str]] = None, hsts: bool = False):
        super().__init__(app)
        self.csp = "; ".join(csp_directives or DEFAULT_CSP)
        self.hsts = hsts

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        # XSS Protection & Clickjacking
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"

        # HSTS only makes sense behind TLS
        if self.hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        response.headers["Content-Security-Policy"] = self.csp
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

        return response
