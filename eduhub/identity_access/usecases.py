"""
User-initiated authentication flows: sign-in and registration.

Intent:
    Keep form validation and the ordering of backend calls out of the web
    adapter. Both use cases drive the identity provider; the SessionStore
    observes the resulting identity change through its subscription.

Errors:
    - `SignInValidationError` / `RegistrationValidationError` for form input
      (session untouched, no backend call made).
    - `InvalidCredentialsError`, `RegistrationConflictError` and other
      `BackendError`s from the backend propagate to the caller, which shows an
      actionable message.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from .domain import Profile, is_allowed_role
from .ports import (
    AccountHandle,
    BackendError,
    IdentityProviderProtocol,
    ProfileStoreProtocol,
)
from .stores import SessionStore

LOG = logging.getLogger("eduhub.identity_access.usecases")

MIN_PASSWORD_LENGTH = 6


class ValidationError(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class SignInValidationError(ValidationError):
    pass


class RegistrationValidationError(ValidationError):
    pass


def _looks_like_email(value: str) -> bool:
    local, sep, domain = value.rpartition("@")
    return bool(sep and local and "." in domain and not domain.startswith("."))


def _next_path(store: SessionStore) -> str:
    settings = store.settings
    return settings.main_path if store.session.is_verified else settings.verify_path


# --- Sign-in -----------------------------------------------------------------


@dataclass
class SignInInput:
    email: str
    password: str
    remember_me: bool = False


@dataclass
class SignInResult:
    account: AccountHandle
    redirect_to: str


class SignInUseCase:
    def __init__(self, store: SessionStore, provider: IdentityProviderProtocol) -> None:
        self._store = store
        self._provider = provider

    async def execute(self, req: SignInInput) -> SignInResult:
        """Sign in with email/password and return where to navigate next.

        Behavior:
            - Empty email or password fails validation without a backend call.
            - Stores or clears the remember-me flag on success.
            - Returns the main area for verified accounts, otherwise the
              verification page (where the poller keeps checking).
        """
        email = (req.email or "").strip()
        if not email or not req.password:
            raise SignInValidationError("missing_credentials", "Please enter both email and password.")
        account = await self._provider.sign_in(email, req.password)
        self._store.set_remember_me(req.remember_me)
        LOG.info("sign-in succeeded")
        return SignInResult(account=account, redirect_to=_next_path(self._store))


# --- Registration ------------------------------------------------------------


@dataclass
class RegistrationInput:
    role: str
    email: str
    password: str
    confirm_password: str
    name: str
    phone: str
    location: str
    school_name: str = ""
    age: str = ""
    grade: str = ""
    teaching_grades: str = ""
    ceo: str = ""
    remember_me: bool = False


@dataclass
class RegistrationResult:
    account: AccountHandle
    profile: Profile
    redirect_to: str


def _blank(value: Optional[str]) -> bool:
    return not (value or "").strip()


def validate_registration(req: RegistrationInput) -> None:
    if not is_allowed_role(req.role):
        raise RegistrationValidationError("invalid_role", "Please choose student, teacher or school.")
    common = (req.email, req.password, req.confirm_password, req.name, req.phone, req.location)
    if any(_blank(v) for v in common):
        raise RegistrationValidationError("missing_fields", "Please fill in all required fields.")
    if not _looks_like_email(req.email.strip()):
        raise RegistrationValidationError("invalid_email", "Please enter a valid email address.")
    if req.password != req.confirm_password:
        raise RegistrationValidationError("password_mismatch", "Your passwords do not match.")
    if len(req.password) < MIN_PASSWORD_LENGTH:
        raise RegistrationValidationError(
            "password_too_short", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    if req.role == "student":
        if _blank(req.school_name) or _blank(req.age) or _blank(req.grade):
            raise RegistrationValidationError("missing_fields", "Please fill in all student details.")
        try:
            age = int(req.age.strip())
        except ValueError:
            raise RegistrationValidationError("invalid_age", "Age must be a whole number.") from None
        if age <= 0:
            raise RegistrationValidationError("invalid_age", "Age must be a whole number.")
    elif req.role == "teacher":
        if _blank(req.school_name) or not _split_grades(req.teaching_grades):
            raise RegistrationValidationError("missing_fields", "Please fill in all teacher details.")
    elif req.role == "school":
        if _blank(req.ceo):
            raise RegistrationValidationError("missing_fields", "Please fill in all school details.")


def _split_grades(raw: str) -> tuple[str, ...]:
    return tuple(g.strip() for g in (raw or "").split(",") if g.strip())


def build_profile(uid: str, email: str, req: RegistrationInput) -> Profile:
    """Assemble the profile document; role-specific fields only for their role."""
    base = dict(
        id=uid,
        email=email,
        role=req.role,
        name=req.name.strip(),
        phone=req.phone.strip(),
        location=req.location.strip(),
    )
    if req.role == "student":
        return Profile(**base, school_name=req.school_name.strip(), age=int(req.age.strip()), grade=req.grade.strip())
    if req.role == "teacher":
        return Profile(**base, school_name=req.school_name.strip(), teaching_grades=_split_grades(req.teaching_grades))
    return Profile(**base, ceo=req.ceo.strip())


class RegisterUseCase:
    def __init__(
        self,
        store: SessionStore,
        provider: IdentityProviderProtocol,
        profiles: ProfileStoreProtocol,
    ) -> None:
        self._store = store
        self._provider = provider
        self._profiles = profiles

    async def execute(self, req: RegistrationInput) -> RegistrationResult:
        """Create the account, persist its profile and send the verification email.

        The account exists once `create_account` returns; later profile or
        email failures are logged and do not undo it (the profile is still
        applied to the session, and the email can be resent).
        """
        validate_registration(req)
        account = await self._provider.create_account(req.email.strip(), req.password)
        profile = build_profile(account.uid, account.email, req)
        try:
            await self._profiles.set_profile(account.uid, profile)
        except BackendError as exc:
            LOG.warning("profile write failed after registration: %s", exc.__class__.__name__)
        self._store.set_profile(profile)
        try:
            await self._provider.send_verification(account)
        except BackendError as exc:
            LOG.warning("verification email failed: %s", exc.__class__.__name__)
        else:
            self._store.note_verification_sent(account)
        self._store.set_remember_me(req.remember_me)
        LOG.info("registration succeeded (role=%s)", req.role)
        return RegistrationResult(account=account, profile=profile, redirect_to=_next_path(self._store))


__all__ = [
    "MIN_PASSWORD_LENGTH",
    "ValidationError",
    "SignInValidationError",
    "RegistrationValidationError",
    "SignInInput",
    "SignInResult",
    "SignInUseCase",
    "RegistrationInput",
    "RegistrationResult",
    "RegisterUseCase",
    "validate_registration",
    "build_profile",
]
