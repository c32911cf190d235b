from datetime import timedelta
from typing import Any, AsyncIterator, Optional

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from parkshare.config import get_settings
from parkshare.deps import get_actor, get_session
from parkshare.domain.context import ActorContext
from parkshare.models import Tenant, User, UserRole
from parkshare.utils.auth import create_access_token


class _Result:
    def __init__(self, row: Optional[tuple[User, Optional[Tenant]]]) -> None:
        self.row = row

    def first(self) -> Optional[tuple[User, Optional[Tenant]]]:
        return self.row


class DummySession:
    def __init__(self, row: Optional[tuple[User, Optional[Tenant]]]) -> None:
        self.row = row
        self.info: dict[str, Any] = {}

    async def execute(self, *args: Any, **kwargs: Any) -> _Result:
        return _Result(self.row)

    async def rollback(self) -> None:
        return None


def _member(tenant_code: Optional[str] = "LMR") -> tuple[User, Optional[Tenant]]:
    user = User(id=123, tenant_code=tenant_code, role=UserRole.RESIDENT, email="a@example.com", name="A", is_active=True)
    tenant = Tenant(code=tenant_code, name="Lumiere", is_active=True) if tenant_code else None
    return user, tenant


def _make_app(row: Optional[tuple[User, Optional[Tenant]]]) -> TestClient:
    app = FastAPI()

    async def override_get_session() -> AsyncIterator[DummySession]:
        yield DummySession(row)

    app.dependency_overrides[get_session] = override_get_session

    @app.get("/protected")
    async def protected(actor: ActorContext = Depends(get_actor)) -> dict[str, Any]:
        return {"user_id": actor.user_id, "tenant_code": actor.tenant_code}

    return TestClient(app)


def _token(secret: str, *, expired: bool = False) -> str:
    delta = timedelta(seconds=-1) if expired else timedelta(minutes=30)
    return create_access_token(user_id=123, secret=secret, expires_delta=delta)


@pytest.fixture(autouse=True)
def _auth_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    get_settings.cache_clear()


def test_protected_accepts_valid_token() -> None:
    client = _make_app(_member())
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('testsecret')}"})
    assert res.status_code == 200
    assert res.json() == {"user_id": 123, "tenant_code": "LMR"}


def test_protected_rejects_missing_header() -> None:
    client = _make_app(_member())
    res = client.get("/protected")
    assert res.status_code == 401
    assert res.headers.get("www-authenticate", "").lower().startswith("bearer")


def test_protected_rejects_invalid_token() -> None:
    client = _make_app(_member())
    res = client.get("/protected", headers={"Authorization": "Bearer invalid"})
    assert res.status_code == 401


def test_protected_rejects_token_signed_elsewhere() -> None:
    client = _make_app(_member())
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('othersecret')}"})
    assert res.status_code == 401


def test_protected_rejects_expired_token() -> None:
    client = _make_app(_member())
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('testsecret', expired=True)}"})
    assert res.status_code == 401


def test_protected_rejects_when_user_not_found() -> None:
    client = _make_app(None)
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('testsecret')}"})
    assert res.status_code == 401


def test_protected_forbids_user_without_community() -> None:
    client = _make_app(_member(tenant_code=None))
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('testsecret')}"})
    assert res.status_code == 403
