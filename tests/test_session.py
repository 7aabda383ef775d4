import threading

import pytest

from histlock import base32, otp
from histlock.errors import (
    InvalidCredentials,
    InvalidMfaCode,
    InvalidStateError,
    RandomnessUnavailable,
    StorageFailure,
    WeakPassword,
)
from histlock.otp import OtpSettings
from histlock.session import AuthState


def assert_invariants(controller):
    record = controller.record
    record.check_invariants()
    if record.mfa_enabled:
        assert record.password_hash is not None
        assert record.mfa_secret is not None


def enable_mfa(controller, clock):
    controller.begin_mfa_enrollment()
    secret = controller.pending_enrollment.secret
    controller.confirm_mfa_enrollment(otp.totp(secret, clock()))
    return secret


@pytest.fixture
def protected(controller):
    controller.set_password("abcd", "abcd")
    return controller


def test_initial_state_without_record_is_unlocked(controller):
    assert controller.state is AuthState.UNLOCKED
    assert not controller.has_password
    assert not controller.mfa_enabled


def test_initial_state_with_password_is_locked(protected, make_controller):
    reloaded = make_controller()
    assert reloaded.state is AuthState.LOCKED
    assert reloaded.has_password


def test_password_scenario(controller):
    controller.set_password("abcd", "abcd")
    controller.lock()
    assert controller.state is AuthState.LOCKED
    assert controller.is_locked

    with pytest.raises(InvalidCredentials):
        controller.submit_password("wrong")
    assert controller.state is AuthState.LOCKED

    assert controller.submit_password("abcd") is AuthState.UNLOCKED
    assert controller.state is AuthState.UNLOCKED


def test_lock_requires_password(controller):
    with pytest.raises(InvalidStateError):
        controller.lock()
    assert controller.state is AuthState.UNLOCKED


@pytest.mark.parametrize("password, confirm", [("", ""), ("abc", "abc"), ("abcd", "abce")])
def test_set_password_rejects_weak_input(controller, store, password, confirm):
    with pytest.raises(WeakPassword):
        controller.set_password(password, confirm)
    assert not controller.has_password
    assert store.get("histman_security") is None


def test_set_password_persists_salt_and_hash(controller, store):
    controller.set_password("abcd", "abcd")
    stored = store.get("histman_security")
    assert stored["passwordHash"] is not None
    assert stored["passwordSalt"] is not None
    assert len(controller.record.password_salt) == 16
    assert len(controller.record.password_hash) == 32


def test_set_password_twice_is_refused(protected):
    with pytest.raises(InvalidStateError):
        protected.set_password("efgh", "efgh")


def test_operations_refused_while_locked(protected):
    protected.lock()
    for operation in (protected.remove_password, protected.disable_mfa, protected.begin_mfa_enrollment):
        with pytest.raises(InvalidStateError):
            operation()
    with pytest.raises(InvalidStateError):
        protected.change_password("abcd", "efgh", "efgh")
    with pytest.raises(InvalidStateError):
        protected.submit_mfa_code("123456")


def test_submit_password_when_unlocked_is_refused(protected):
    with pytest.raises(InvalidStateError):
        protected.submit_password("abcd")


def test_change_password_regenerates_salt(protected):
    old = protected.record
    protected.change_password("abcd", "efgh", "efgh")
    new = protected.record
    assert new.password_salt != old.password_salt
    assert new.password_hash != old.password_hash

    protected.lock()
    with pytest.raises(InvalidCredentials):
        protected.submit_password("abcd")
    assert protected.submit_password("efgh") is AuthState.UNLOCKED


def test_change_password_wrong_old(protected):
    before = protected.record
    with pytest.raises(InvalidCredentials):
        protected.change_password("nope", "efgh", "efgh")
    assert protected.record == before


def test_change_password_weak_new_is_checked_before_old(protected, fast_crypto, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("hashed a password before validating it")

    monkeypatch.setattr(fast_crypto, "hash_password", fail)
    with pytest.raises(WeakPassword):
        protected.change_password("abcd", "ef", "ef")
    with pytest.raises(WeakPassword):
        protected.change_password("abcd", "efgh", "efgi")


def test_change_password_keeps_mfa(protected, clock):
    secret = enable_mfa(protected, clock)
    protected.change_password("abcd", "efgh", "efgh")
    assert protected.mfa_enabled
    assert protected.record.mfa_secret == secret


def test_remove_password_clears_everything(protected, clock, store):
    enable_mfa(protected, clock)
    protected.remove_password()
    record = protected.record
    assert record.password_hash is None
    assert record.password_salt is None
    assert record.mfa_secret is None
    assert record.mfa_enabled is False
    assert store.get("histman_security")["passwordHash"] is None
    assert protected.state is AuthState.UNLOCKED
    with pytest.raises(InvalidStateError):
        protected.lock()


def test_begin_enrollment_requires_password(controller):
    with pytest.raises(InvalidStateError):
        controller.begin_mfa_enrollment()
    assert controller.state is AuthState.UNLOCKED


def test_begin_enrollment(protected, store):
    info = protected.begin_mfa_enrollment()
    pending = protected.pending_enrollment

    assert protected.state is AuthState.ENROLLING_MFA
    assert len(pending.secret) == 20
    assert info.secret_base32 == base32.encode(pending.secret)
    assert info.formatted_secret.replace(" ", "") == info.secret_base32
    assert info.otpauth_uri == (
        f"otpauth://totp/HistMan:HistMan%20User?secret={info.secret_base32}"
        "&issuer=HistMan&algorithm=SHA1&digits=6&period=30"
    )
    # Not persisted until confirmed
    assert store.get("histman_security")["mfaSecret"] is None
    assert not protected.mfa_enabled


def test_mfa_scenario(protected, clock):
    protected.begin_mfa_enrollment()
    secret = protected.pending_enrollment.secret
    current_counter = int(clock() // 30)

    protected.confirm_mfa_enrollment(otp.hotp(secret, current_counter))
    assert protected.state is AuthState.UNLOCKED
    assert protected.mfa_enabled
    assert protected.pending_enrollment is None

    protected.lock()
    assert protected.submit_password("abcd") is AuthState.LOCKED_AWAITING_MFA
    assert protected.is_locked

    with pytest.raises(InvalidMfaCode):
        protected.submit_mfa_code("000000" if otp.totp(secret, clock()) != "000000" else "111111")
    assert protected.state is AuthState.LOCKED_AWAITING_MFA

    assert protected.submit_mfa_code(otp.totp(secret, clock())) is AuthState.UNLOCKED
    assert_invariants(protected)


def test_mfa_survives_reload(protected, clock, make_controller):
    secret = enable_mfa(protected, clock)
    reloaded = make_controller()
    assert reloaded.mfa_enabled
    assert reloaded.record.mfa_secret == secret
    assert reloaded.submit_password("abcd") is AuthState.LOCKED_AWAITING_MFA


def test_confirm_enrollment_wrong_code_keeps_pending(protected, clock):
    protected.begin_mfa_enrollment()
    pending = protected.pending_enrollment
    wrong = otp.totp(pending.secret, clock() - 120)

    with pytest.raises(InvalidMfaCode):
        protected.confirm_mfa_enrollment(wrong)
    assert protected.state is AuthState.ENROLLING_MFA
    assert protected.pending_enrollment == pending
    assert not protected.mfa_enabled

    protected.confirm_mfa_enrollment(otp.totp(pending.secret, clock()))
    assert protected.mfa_enabled


def test_confirm_enrollment_accepts_drift(protected, clock):
    protected.begin_mfa_enrollment()
    secret = protected.pending_enrollment.secret
    protected.confirm_mfa_enrollment(otp.totp(secret, clock() - 30))
    assert protected.mfa_enabled


def test_cancel_enrollment(protected, store):
    protected.begin_mfa_enrollment()
    before = store.get("histman_security")
    protected.cancel_mfa_enrollment()
    assert protected.state is AuthState.UNLOCKED
    assert protected.pending_enrollment is None
    assert store.get("histman_security") == before
    # No-op outside enrollment
    protected.cancel_mfa_enrollment()
    assert protected.state is AuthState.UNLOCKED


def test_restart_enrollment_replaces_secret(protected):
    protected.begin_mfa_enrollment()
    first = protected.pending_enrollment.secret
    protected.begin_mfa_enrollment()
    assert protected.pending_enrollment.secret != first
    assert protected.state is AuthState.ENROLLING_MFA


def test_lock_discards_enrollment(protected):
    protected.begin_mfa_enrollment()
    protected.lock()
    assert protected.state is AuthState.LOCKED
    assert protected.pending_enrollment is None


def test_disable_mfa(protected, clock):
    enable_mfa(protected, clock)
    protected.disable_mfa()
    assert not protected.mfa_enabled
    assert protected.record.mfa_secret is None
    assert protected.has_password

    protected.lock()
    assert protected.submit_password("abcd") is AuthState.UNLOCKED


def test_unlock_single_form(protected, clock):
    secret = enable_mfa(protected, clock)
    protected.lock()

    with pytest.raises(InvalidMfaCode):
        protected.unlock("abcd")
    assert protected.state is AuthState.LOCKED_AWAITING_MFA

    with pytest.raises(InvalidCredentials):
        protected.unlock("wrong", otp.totp(secret, clock()))
    assert protected.state is AuthState.LOCKED

    assert protected.unlock("abcd", otp.totp(secret, clock())) is AuthState.UNLOCKED


def test_unlock_without_mfa(protected):
    protected.lock()
    assert protected.unlock("abcd") is AuthState.UNLOCKED


def test_code_replay_allowed_by_default(protected, clock):
    secret = enable_mfa(protected, clock)
    code = otp.totp(secret, clock())
    for _ in range(2):
        protected.lock()
        protected.submit_password("abcd")
        protected.submit_mfa_code(code)
        assert protected.state is AuthState.UNLOCKED


def test_code_replay_rejected_when_enabled(make_controller, clock):
    controller = make_controller(reject_replayed_codes=True)
    controller.set_password("abcd", "abcd")
    secret = enable_mfa(controller, clock)

    clock.advance(30)
    code = otp.totp(secret, clock())
    controller.lock()
    controller.unlock("abcd", code)

    controller.lock()
    with pytest.raises(InvalidMfaCode):
        controller.unlock("abcd", code)
    assert controller.state is AuthState.LOCKED_AWAITING_MFA

    clock.advance(30)
    assert controller.submit_mfa_code(otp.totp(secret, clock())) is AuthState.UNLOCKED


def test_storage_failure_leaves_state_unchanged(protected, store, clock):
    before = protected.record
    store.fail_writes = True

    with pytest.raises(StorageFailure):
        protected.change_password("abcd", "efgh", "efgh")
    assert protected.record == before

    protected.begin_mfa_enrollment()
    secret = protected.pending_enrollment.secret
    with pytest.raises(StorageFailure):
        protected.confirm_mfa_enrollment(otp.totp(secret, clock()))
    assert protected.state is AuthState.ENROLLING_MFA
    assert not protected.mfa_enabled

    store.fail_writes = False
    protected.confirm_mfa_enrollment(otp.totp(secret, clock()))
    assert protected.mfa_enabled


def test_remove_password_storage_failure_keeps_password(protected, store):
    protected.begin_mfa_enrollment()
    protected.cancel_mfa_enrollment()
    before = protected.record
    store.fail_writes = True

    with pytest.raises(StorageFailure):
        protected.remove_password()
    assert protected.has_password
    assert protected.state is AuthState.UNLOCKED
    assert protected.record == before

    store.fail_writes = False
    protected.lock()
    assert protected.submit_password("abcd") is AuthState.UNLOCKED


def test_randomness_failure_aborts_enrollment(protected, fast_crypto):
    def broken(n):
        raise OSError("no entropy")

    fast_crypto.random_source = broken
    with pytest.raises(RandomnessUnavailable):
        protected.begin_mfa_enrollment()
    assert protected.state is AuthState.UNLOCKED
    assert protected.pending_enrollment is None


def test_randomness_failure_aborts_set_password(controller, fast_crypto, store):
    def broken(n):
        raise OSError("no entropy")

    fast_crypto.random_source = broken
    with pytest.raises(RandomnessUnavailable):
        controller.set_password("abcd", "abcd")
    assert not controller.has_password
    assert store.get("histman_security") is None


def test_corrupt_store_fails_construction(store, make_controller):
    store.set("histman_security", {"passwordHash": "!!", "passwordSalt": None})
    with pytest.raises(StorageFailure):
        make_controller()


def test_argon2_record_verifies_after_kdf_change(store, clock, random_source):
    from histlock.crypto import CryptoManager
    from histlock.session import AuthSessionController

    argon = AuthSessionController(store, crypto=CryptoManager(kdf="argon2id", random_source=random_source), clock=clock)
    argon.set_password("abcd", "abcd")
    assert store.get("histman_security")["kdf"] == "argon2id"

    pbkdf2 = AuthSessionController(store, crypto=CryptoManager(iterations=1000), clock=clock)
    assert pbkdf2.submit_password("abcd") is AuthState.UNLOCKED


def test_enrollment_follows_otp_settings(make_controller, clock):
    controller = make_controller(settings=OtpSettings(digits=8, step=60))
    controller.set_password("abcd", "abcd")
    info = controller.begin_mfa_enrollment()
    assert info.otpauth_uri.endswith("&digits=8&period=60")

    secret = controller.pending_enrollment.secret
    controller.confirm_mfa_enrollment(otp.totp(secret, clock(), step=60, digits=8))
    assert controller.mfa_enabled

    controller.lock()
    controller.submit_password("abcd")
    clock.advance(60)
    assert controller.submit_mfa_code(otp.totp(secret, clock(), step=60, digits=8)) is AuthState.UNLOCKED


def test_record_keeps_its_iteration_count(protected, store, clock):
    from histlock.crypto import CryptoManager
    from histlock.session import AuthSessionController

    assert store.get("histman_security")["iterations"] == 1000

    default = AuthSessionController(store, crypto=CryptoManager(), clock=clock)
    assert default.submit_password("abcd") is AuthState.UNLOCKED

    default.change_password("abcd", "efgh", "efgh")
    assert store.get("histman_security")["iterations"] == 100000


def test_remove_password_keeps_manager_iterations(protected, store):
    protected.remove_password()
    assert store.get("histman_security")["iterations"] == 1000


def test_operations_are_serialized(protected, fast_crypto, monkeypatch):
    protected.lock()
    original = fast_crypto.hash_password
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def slow_hash(*args, **kwargs):
        calls.append(args[0])
        if len(calls) == 1:
            entered.set()
            release.wait(5)
        return original(*args, **kwargs)

    monkeypatch.setattr(fast_crypto, "hash_password", slow_hash)
    errors = []

    def run(operation, *args):
        try:
            operation(*args)
        except Exception as e:
            errors.append(e)

    unlocking = threading.Thread(target=run, args=(protected.submit_password, "abcd"))
    changing = threading.Thread(target=run, args=(protected.change_password, "abcd", "efgh", "efgh"))
    unlocking.start()
    assert entered.wait(5)

    changing.start()
    changing.join(0.2)
    assert changing.is_alive()
    assert calls == ["abcd"]
    assert protected.state is AuthState.LOCKED

    release.set()
    unlocking.join(5)
    changing.join(5)
    assert errors == []
    assert protected.state is AuthState.UNLOCKED

    protected.lock()
    assert protected.submit_password("efgh") is AuthState.UNLOCKED
    assert_invariants(protected)
