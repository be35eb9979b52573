"""
Shared cookie policy for the web adapter.

Why:
    The client cookie is set by the middleware and cleared by the logout
    route; both must use the same flags.
"""

from __future__ import annotations

CLIENT_COOKIE_NAME = "eduhub_client"


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"  # top-level navigations keep the client id
      - httponly: True
    """
    return {"secure": True, "samesite": "lax", "httponly": True}
