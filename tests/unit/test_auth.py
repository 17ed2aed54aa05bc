from datetime import timedelta

import pytest

from auth import (
    AuthService,
    create_access_token,
    decode_access_token,
    ensure_owner_access,
    hash_password,
    verify_password,
)
from errors import Forbidden, NotFound, Unauthorized, ValidationError
from seed import seed_users


@pytest.fixture
def auth_service(user_store, settings):
    return AuthService(user_store, settings)


def test_password_hash_roundtrip():
    hashed = hash_password("Admin@123")
    assert hashed != "Admin@123"
    assert verify_password("Admin@123", hashed)
    assert not verify_password("wrong", hashed)


def test_token_roundtrip(settings):
    token = create_access_token({"sub": "a@b.c", "email": "a@b.c", "role": "customer"}, settings)
    payload = decode_access_token(token, settings)
    assert payload["email"] == "a@b.c"
    assert payload["role"] == "customer"


def test_expired_token_rejected(settings):
    token = create_access_token({"sub": "a@b.c"}, settings, expires_delta=timedelta(minutes=-1))
    with pytest.raises(Unauthorized):
        decode_access_token(token, settings)


def test_token_signed_with_other_secret_rejected(settings):
    other = settings.model_copy(update={"jwt_secret": "another-secret"})
    token = create_access_token({"sub": "a@b.c"}, other)
    with pytest.raises(Unauthorized, match="Invalid token"):
        decode_access_token(token, settings)


def test_register_and_login(auth_service):
    registered = auth_service.register("jane", "Jane@Example.com", "pw-123")

    assert registered["user"]["email"] == "jane@example.com"
    assert registered["user"]["role"] == "customer"
    assert registered["user"]["ownerId"] == "jane@example.com"
    assert "password_hash" not in registered["user"]

    logged_in = auth_service.login("JANE@example.com", "pw-123")
    assert logged_in["token"]
    assert logged_in["user"]["username"] == "jane"


def test_register_requires_fields(auth_service):
    with pytest.raises(ValidationError):
        auth_service.register("jane", None, "pw")


def test_register_duplicate(auth_service):
    auth_service.register("jane", "jane@example.com", "pw")
    with pytest.raises(ValidationError, match="User already exists"):
        auth_service.register("jane2", "jane@example.com", "pw")
    with pytest.raises(ValidationError, match="User already exists"):
        auth_service.register("jane", "other@example.com", "pw")


def test_register_admin_forbidden(auth_service):
    with pytest.raises(Forbidden):
        auth_service.register("boss", "boss@example.com", "pw", role="admin")
    with pytest.raises(ValidationError):
        auth_service.register("boss", "boss@example.com", "pw", role="superuser")


def test_login_bad_credentials(auth_service):
    auth_service.register("jane", "jane@example.com", "pw")
    with pytest.raises(Unauthorized, match="Invalid credentials"):
        auth_service.login("jane@example.com", "nope")
    with pytest.raises(Unauthorized):
        auth_service.login("ghost@example.com", "pw")
    with pytest.raises(ValidationError):
        auth_service.login("jane@example.com", "")


def test_profile(auth_service):
    auth_service.register("jane", "jane@example.com", "pw")
    assert auth_service.profile("jane@example.com")["username"] == "jane"
    with pytest.raises(NotFound):
        auth_service.profile("ghost@example.com")


def test_seed_users_only_once(auth_service, settings, user_store):
    assert seed_users(auth_service, settings) is True
    assert seed_users(auth_service, settings) is False
    assert user_store.count() == 2
    assert auth_service.login(settings.admin_id, settings.admin_password)["user"]["role"] == "admin"


def test_owner_access_rules():
    admin = {"email": "admin@test.com", "role": "admin"}
    customer = {"email": "cust@test.com", "role": "customer"}

    ensure_owner_access(admin, "anyone")
    ensure_owner_access(customer, "CUST@test.com")
    with pytest.raises(Forbidden):
        ensure_owner_access(customer, "admin@test.com")
