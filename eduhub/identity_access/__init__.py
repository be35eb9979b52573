"""Identity & access context: session lifecycle, demo mode, route guard.

Re-export the commonly used types for convenient imports in the web layer
and tests.
"""

from .domain import ALLOWED_ROLES, Profile, demo_persona
from .guard import GuardDecision, RouteGuard, RouteRule
from .ports import (
    AccountHandle,
    BackendError,
    DemoNotAllowedError,
    InvalidCredentialsError,
    ProfileNotFoundError,
    RegistrationConflictError,
    TransientBackendError,
)
from .session import Anonymous, Authenticated, Demo, Notification, Session, SessionEvents, VerificationState
from .stores import SessionSettings, SessionStore

__all__ = [
    "ALLOWED_ROLES",
    "Profile",
    "demo_persona",
    "GuardDecision",
    "RouteGuard",
    "RouteRule",
    "AccountHandle",
    "BackendError",
    "DemoNotAllowedError",
    "InvalidCredentialsError",
    "ProfileNotFoundError",
    "RegistrationConflictError",
    "TransientBackendError",
    "Anonymous",
    "Authenticated",
    "Demo",
    "Notification",
    "Session",
    "SessionEvents",
    "VerificationState",
    "SessionSettings",
    "SessionStore",
]
