"""
Sign-in and registration use cases.

Why:
    Form validation must reject bad input before any backend call, and a
    rejected sign-in must leave the current session untouched.
"""

from __future__ import annotations

import pytest

from eduhub.identity_access.memory import InMemoryIdentityDirectory, InMemoryIdentityProvider, InMemoryProfileStore
from eduhub.identity_access.ports import (
    BackendRequestError,
    InvalidCredentialsError,
    RegistrationConflictError,
    ResendCooldownError,
    TransientBackendError,
)
from eduhub.identity_access.session import VerificationState
from eduhub.identity_access.stores import REMEMBER_ME_KEY, SessionSettings
from eduhub.identity_access.usecases import (
    RegisterUseCase,
    RegistrationInput,
    RegistrationValidationError,
    SignInInput,
    SignInUseCase,
    SignInValidationError,
    build_profile,
    validate_registration,
)

from .utils.harness import make_harness

pytestmark = pytest.mark.anyio("asyncio")


def _student(**overrides) -> RegistrationInput:
    data = dict(
        role="student",
        email="stu@example.com",
        password="secret123",
        confirm_password="secret123",
        name="Stu",
        phone="555-0101",
        location="Springfield",
        school_name="Springfield High",
        age="15",
        grade="10",
    )
    data.update(overrides)
    return RegistrationInput(**data)


@pytest.mark.parametrize(
    "overrides,code",
    [
        ({"role": "admin"}, "invalid_role"),
        ({"phone": "  "}, "missing_fields"),
        ({"email": "not-an-email"}, "invalid_email"),
        ({"confirm_password": "different"}, "password_mismatch"),
        ({"password": "abc", "confirm_password": "abc"}, "password_too_short"),
        ({"age": ""}, "missing_fields"),
        ({"age": "fifteen"}, "invalid_age"),
        ({"age": "0"}, "invalid_age"),
    ],
)
def test_registration_validation_codes(overrides, code):
    with pytest.raises(RegistrationValidationError) as exc:
        validate_registration(_student(**overrides))
    assert exc.value.code == code


def test_teacher_and_school_require_role_fields():
    teacher = _student(role="teacher", teaching_grades=" , ")
    with pytest.raises(RegistrationValidationError):
        validate_registration(teacher)
    validate_registration(_student(role="teacher", teaching_grades="7, 8"))

    with pytest.raises(RegistrationValidationError):
        validate_registration(_student(role="school", ceo=""))
    validate_registration(_student(role="school", ceo="Dr. Head"))


def test_build_profile_keeps_only_role_fields():
    teacher = build_profile("uid-1", "t@example.com", _student(role="teacher", teaching_grades="7, 8 ,9", age="40"))
    assert teacher.teaching_grades == ("7", "8", "9")
    assert teacher.age is None
    student = build_profile("uid-2", "s@example.com", _student())
    assert student.age == 15 and student.grade == "10"
    assert student.teaching_grades == ()


@pytest.mark.anyio
async def test_sign_in_missing_fields_makes_no_backend_call():
    h = make_harness()
    await h.store.initialize()

    with pytest.raises(SignInValidationError) as exc:
        await SignInUseCase(h.store, h.provider).execute(SignInInput(email=" ", password="x"))

    assert exc.value.code == "missing_credentials"
    assert await h.provider.current_account() is None


@pytest.mark.anyio
async def test_invalid_credentials_leave_session_unchanged():
    h = make_harness()
    await h.store.initialize()
    h.store.start_demo("student")
    await h.register("real@example.com", verified=True)
    before = h.store.session

    with pytest.raises(InvalidCredentialsError):
        await SignInUseCase(h.store, h.provider).execute(SignInInput(email="real@example.com", password="wrong"))

    assert h.store.session == before
    assert h.store.remember_me is False


@pytest.mark.anyio
async def test_sign_in_redirects_by_verification_and_stores_remember_me():
    h = make_harness()
    await h.store.initialize()
    await h.register("v@example.com", verified=True)

    result = await SignInUseCase(h.store, h.provider).execute(
        SignInInput(email="v@example.com", password="secret123", remember_me=True)
    )

    assert result.redirect_to == "/dashboard"
    assert h.storage.get(REMEMBER_ME_KEY) == "true"

    await h.store.sign_out()
    await h.register("u@example.com")
    result = await SignInUseCase(h.store, h.provider).execute(SignInInput(email="u@example.com", password="secret123"))
    assert result.redirect_to == "/verify"
    assert h.store.remember_me is False


@pytest.mark.anyio
async def test_register_creates_account_profile_and_sends_verification():
    h = make_harness()
    await h.store.initialize()

    result = await RegisterUseCase(h.store, h.provider, h.profiles).execute(_student(remember_me=True))

    s = h.store.session
    assert s.is_authenticated
    assert s.verification is VerificationState.UNVERIFIED
    assert s.profile == result.profile
    assert (await h.profiles.get_profile(result.account.uid)).name == "Stu"
    assert h.directory.verification_requests == [result.account.uid]
    assert result.redirect_to == "/verify"
    assert h.store.remember_me is True
    assert h.store.poller.running


@pytest.mark.anyio
async def test_register_duplicate_email_conflicts():
    h = make_harness()
    await h.store.initialize()
    await h.register("stu@example.com")

    with pytest.raises(RegistrationConflictError):
        await RegisterUseCase(h.store, h.provider, h.profiles).execute(_student())

    assert h.store.session.is_anonymous


@pytest.mark.anyio
async def test_register_survives_profile_write_failure():
    class ReadOnlyProfiles(InMemoryProfileStore):
        async def set_profile(self, uid, profile):
            raise TransientBackendError("profiles_down")

    h = make_harness()
    await h.store.initialize()

    result = await RegisterUseCase(h.store, h.provider, ReadOnlyProfiles()).execute(_student())

    assert h.store.session.profile == result.profile
    assert h.directory.verification_requests == [result.account.uid]


@pytest.mark.anyio
async def test_register_validation_failure_creates_no_account():
    h = make_harness()
    await h.store.initialize()

    with pytest.raises(RegistrationValidationError):
        await RegisterUseCase(h.store, h.provider, h.profiles).execute(_student(confirm_password="nope"))

    assert h.directory.find_by_email("stu@example.com") is None


@pytest.mark.anyio
async def test_register_survives_rejected_verification_email():
    class NoMailProvider(InMemoryIdentityProvider):
        async def send_verification(self, account):
            raise BackendRequestError("send_verify_email_failed")

    directory = InMemoryIdentityDirectory()
    h = make_harness(directory=directory, provider=NoMailProvider(directory))
    await h.store.initialize()

    result = await RegisterUseCase(h.store, h.provider, h.profiles).execute(_student())

    assert result.redirect_to == "/verify"
    assert h.store.session.is_authenticated
    assert h.store.resend_available_in() == 0


# --- Verification resend cooldown ------------------------------------------------


@pytest.mark.anyio
async def test_resend_blocked_until_cooldown_after_registration():
    h = make_harness()
    await h.store.initialize()
    result = await RegisterUseCase(h.store, h.provider, h.profiles).execute(_student())

    with pytest.raises(ResendCooldownError) as exc:
        await h.store.resend_verification()
    assert exc.value.retry_after_seconds == 60

    await h.scheduler.advance(59)
    assert h.store.resend_available_in() == 1
    with pytest.raises(ResendCooldownError):
        await h.store.resend_verification()

    await h.scheduler.advance(1)
    assert await h.store.resend_verification() is True
    assert h.directory.verification_requests == [result.account.uid, result.account.uid]
    assert h.store.resend_available_in() == 60


@pytest.mark.anyio
async def test_first_resend_after_sign_in_is_immediate_then_throttled():
    h = make_harness(settings=SessionSettings(resend_cooldown_seconds=30))
    await h.store.initialize()
    await h.register("late@example.com")
    await h.provider.sign_in("late@example.com", "secret123")

    assert await h.store.resend_verification() is True
    with pytest.raises(ResendCooldownError) as exc:
        await h.store.resend_verification()
    assert exc.value.retry_after_seconds == 30
    assert len(h.directory.verification_requests) == 1


@pytest.mark.anyio
async def test_resend_cooldown_is_per_account():
    h = make_harness()
    await h.store.initialize()
    await h.register("one@example.com")
    await h.register("two@example.com")
    await h.provider.sign_in("one@example.com", "secret123")
    await h.store.resend_verification()

    await h.store.sign_out()
    await h.provider.sign_in("two@example.com", "secret123")

    assert h.store.resend_available_in() == 0
    assert await h.store.resend_verification() is True


@pytest.mark.anyio
async def test_resend_without_pending_verification_is_refused():
    h = make_harness()
    await h.store.initialize()

    assert await h.store.resend_verification() is False

    await h.register("done@example.com", verified=True)
    await h.provider.sign_in("done@example.com", "secret123")
    assert await h.store.resend_verification() is False
    assert h.directory.verification_requests == []
