"""
Route guard: decide per navigation whether a target is reachable.

Decision order (first match wins):
    1. Session still loading           -> LOADING (defer, show interstitial)
    2. Auth required, anonymous        -> redirect to entry page
    3. Verified required, unverified   -> redirect to verification page
    4. Entry page, demo or verified    -> redirect to main area
    5. Verification page, verified     -> redirect to main area
    6. Otherwise                       -> ALLOW

Framework-agnostic on purpose: the FastAPI middleware translates decisions
into responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .session import Session, VerificationState

ALLOW = "allow"
REDIRECT = "redirect"
LOADING = "loading"


@dataclass(frozen=True)
class RouteRule:
    """Access requirements for a path or a path prefix.

    `pattern` ending in `/*` matches the prefix itself and everything below.
    """

    pattern: str
    requires_auth: bool = False
    requires_verified: bool = False
    entry: bool = False
    verification: bool = False

    def matches(self, path: str) -> bool:
        if self.pattern.endswith("/*"):
            prefix = self.pattern[:-2]
            return path == prefix or path.startswith(prefix + "/")
        return path == self.pattern


@dataclass(frozen=True)
class GuardDecision:
    outcome: str
    location: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == ALLOW


DEFAULT_RULES: tuple[RouteRule, ...] = (
    RouteRule("/"),
    RouteRule("/resources"),
    RouteRule("/videos"),
    RouteRule("/login", entry=True),
    RouteRule("/register", entry=True),
    RouteRule("/verify", requires_auth=True, verification=True),
    RouteRule("/dashboard/*", requires_auth=True, requires_verified=True),
)

_PUBLIC = RouteRule("*")


def _normalize(path: str) -> str:
    if not path:
        return "/"
    path = path.split("?", 1)[0]
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return path


class RouteGuard:
    def __init__(
        self,
        rules: Sequence[RouteRule] = DEFAULT_RULES,
        *,
        entry_path: str = "/login",
        verify_path: str = "/verify",
        main_path: str = "/dashboard",
    ) -> None:
        self._rules = tuple(rules)
        self.entry_path = entry_path
        self.verify_path = verify_path
        self.main_path = main_path

    @property
    def rules(self) -> Iterable[RouteRule]:
        return self._rules

    def rule_for(self, path: str) -> RouteRule:
        path = _normalize(path)
        for rule in self._rules:
            if rule.matches(path):
                return rule
        return _PUBLIC

    def decide(self, session: Session, path: str) -> GuardDecision:
        if session.loading:
            return GuardDecision(LOADING)
        rule = self.rule_for(path)
        if rule.requires_auth and session.is_anonymous:
            return GuardDecision(REDIRECT, self.entry_path)
        if (
            rule.requires_verified
            and session.is_authenticated
            and session.verification is VerificationState.UNVERIFIED
        ):
            return GuardDecision(REDIRECT, self.verify_path)
        if rule.entry and session.is_verified:
            return GuardDecision(REDIRECT, self.main_path)
        if rule.verification and session.is_verified:
            return GuardDecision(REDIRECT, self.main_path)
        return GuardDecision(ALLOW)


__all__ = ["RouteGuard", "RouteRule", "GuardDecision", "DEFAULT_RULES", "ALLOW", "REDIRECT", "LOADING"]
