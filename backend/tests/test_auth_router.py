from datetime import datetime

import pytest
from fastapi import HTTPException

from app.models.user import User
from app.routers import auth
from app.services import auth as auth_service


class _FakeResult:
    def __init__(self, scalar_one_or_none_value=None):
        self._scalar_one_or_none_value = scalar_one_or_none_value

    def scalar_one_or_none(self):
        return self._scalar_one_or_none_value


class _FakeSession:
    def __init__(self, execute_results):
        self._execute_results = list(execute_results)
        self.added_user = None
        self.committed = False
        self.refreshed = False

    async def execute(self, _query):
        if not self._execute_results:
            raise AssertionError("Unexpected extra db.execute() call")
        return self._execute_results.pop(0)

    def add(self, user):
        self.added_user = user

    async def commit(self):
        self.committed = True

    async def refresh(self, user):
        self.refreshed = True
        user.id = 1
        user.created_at = datetime.utcnow()


@pytest.mark.asyncio
async def test_register_rejects_existing_email():
    existing = User(id=3, name="taken", email="taken@example.com")
    db = _FakeSession([_FakeResult(scalar_one_or_none_value=existing)])
    request = auth.RegisterRequest(name="New", email="Taken@Example.com", password="password123")

    with pytest.raises(HTTPException) as exc_info:
        await auth.register(request, db)

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "User already exists"
    assert db.added_user is None


@pytest.mark.asyncio
async def test_register_creates_listener_with_lowercased_email(monkeypatch):
    monkeypatch.setattr(auth, "get_password_hash", lambda raw: f"hashed::{raw}")
    monkeypatch.setattr(auth, "create_access_token", lambda data: f"token::{data['sub']}")

    db = _FakeSession([_FakeResult(scalar_one_or_none_value=None)])
    request = auth.RegisterRequest(name="Newbie", email="NewBie@Example.com", password="password123")

    response = await auth.register(request, db)

    assert response.access_token == "token::1"
    assert response.user["email"] == "newbie@example.com"
    assert response.user["is_admin"] is False
    assert response.user["subscription"] == "free"
    assert db.added_user.hashed_password == "hashed::password123"
    assert db.committed is True
    assert db.refreshed is True


def test_register_request_enforces_minimum_password_length():
    with pytest.raises(ValueError):
        auth.RegisterRequest(name="x", email="x@example.com", password="123")


@pytest.mark.asyncio
async def test_login_rejects_bad_credentials(monkeypatch):
    async def fake_authenticate(_db, _email, _password):
        return None

    monkeypatch.setattr(auth, "authenticate_user", fake_authenticate)

    with pytest.raises(HTTPException) as exc_info:
        await auth.login(auth.LoginRequest(email="a@example.com", password="nope"), _FakeSession([]))

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_updates_last_login(monkeypatch):
    user = User(id=4, name="Ada", email="ada@example.com", subscription="premium", is_admin=False)

    async def fake_authenticate(_db, email, password):
        assert (email, password) == ("ada@example.com", "secret-pass")
        return user

    monkeypatch.setattr(auth, "authenticate_user", fake_authenticate)
    db = _FakeSession([])

    response = await auth.login(auth.LoginRequest(email=" ada@example.com ", password="secret-pass"), db)

    assert response.user["id"] == 4
    assert response.user["subscription"] == "premium"
    assert user.last_login_at is not None
    assert db.committed is True


def test_access_token_round_trips_user_id():
    token = auth_service.create_access_token({"sub": "42"})

    assert auth_service.decode_user_id(token) == 42
    assert auth_service.decode_user_id("not-a-token") is None


@pytest.mark.asyncio
async def test_update_profile_merges_preferences():
    user = User(
        id=4, name="Ada", email="ada@example.com", subscription="free", is_admin=False,
        preferences={"theme": "dark", "explicit": False},
    )
    db = _FakeSession([])

    profile = await auth.update_profile(
        {"name": " Ada L ", "preferences": {"explicit": True}, "profile_picture": "/img/ada.png"},
        user,
        db,
    )

    assert profile["name"] == "Ada L"
    assert profile["preferences"] == {"theme": "dark", "explicit": True}
    assert profile["profile_picture"] == "/img/ada.png"
    assert db.committed is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "updates",
    [
        {"email": "new@example.com"},
        {"is_admin": True},
        {"preferences": "dark"},
        {"name": ""},
        {},
    ],
)
async def test_update_profile_rejects_invalid_updates(updates):
    user = User(id=4, name="Ada", email="ada@example.com", is_admin=False)
    db = _FakeSession([])

    with pytest.raises(HTTPException) as exc_info:
        await auth.update_profile(updates, user, db)

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Invalid updates"
    assert user.is_admin is False
    assert db.committed is False


@pytest.mark.asyncio
async def test_logout_acknowledges_current_user():
    response = await auth.logout(User(id=4, name="Ada", email="ada@example.com"))

    assert response == {"message": "Logged out successfully"}
