"""
Security headers middleware.

The service only speaks JSON; the reviewer and PM portals are separate
front-ends that call it cross-origin.  Responses therefore carry a
locked-down CSP, and token portal responses are marked non-cacheable so
a capability-bearing payload never lands in a shared cache.

Usage:
    from testhub.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

# Path prefixes whose responses are addressed by a capability token
TOKEN_PORTAL_PREFIXES = ("/api/uat/pm/", "/api/uat/token/")


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        from flask import request

        response.headers.setdefault(
            "Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"
        )
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
        )
        # Tokens live in the URL path; never leak them through Referer
        response.headers.setdefault("Referrer-Policy", "no-referrer")

        if request.path.startswith(TOKEN_PORTAL_PREFIXES):
            response.headers["Cache-Control"] = "no-store"

        response.headers.pop("Server", None)
        return response
