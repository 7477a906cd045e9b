"""
Security headers middleware.

Applies X-Content-Type-Options, X-Frame-Options, Strict-Transport-Security,
Referrer-Policy and a locked-down Content-Security-Policy to every response.
The API serves JSON only, so nothing is allowed to load from it.

Usage:
    from crm.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

from flask import request


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        response.headers.setdefault(
            "Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"
        )
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
        )
        response.headers.setdefault("Referrer-Policy", "no-referrer")

        # Authenticated responses must not land in shared caches
        if "Authorization" in request.headers:
            response.headers.setdefault("Cache-Control", "no-store")

        response.headers.pop("Server", None)
        return response
