import pytest
from werkzeug.security import generate_password_hash

from app.listopia import create_app
from app.listopia.auth import _login_attempts
from app.listopia.db import session_scope
from app.listopia.models import Base, Permission, Role, User
from app.listopia.modules.chat.llm import Completion

CSRF_TOKEN = "test-csrf-token"
PASSWORD = "password123"


class FakeLLM:
    """Stands in for the OpenAI client; records every conversation it is sent."""

    available = True

    def __init__(self, reply: str = "Here is a plan for your week.", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    def complete(self, messages, *, model=None):
        self.calls.append({"messages": messages, "model": model})
        if self.error is not None:
            raise self.error
        return Completion(
            content=self.reply,
            model=model or "fake-model",
            input_tokens=42,
            output_tokens=7,
            processing_time=0.25,
        )


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("LLM_MODEL", "test-model")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    app = create_app()
    app.extensions["llm_client"] = FakeLLM()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    _login_attempts.clear()

    with session_scope(app) as s:
        view = Permission(key="admin.view", name="Admin: view dashboard")
        users = Permission(key="admin.users", name="Admin: manage users")
        r = Role(key="admin", name="Administrator")
        r.permissions.extend([view, users])
        u = User(
            email="admin@example.com",
            name="Admin",
            password_hash=generate_password_hash(PASSWORD),
            is_active=True,
        )
        u.roles.append(r)
        s.add_all([view, users, r, u])

    return app


@pytest.fixture()
def client(app):
    c = app.test_client()
    with c.session_transaction() as sess:
        sess["csrf_token"] = CSRF_TOKEN
    c.environ_base["HTTP_X_CSRF_TOKEN"] = CSRF_TOKEN
    return c


@pytest.fixture()
def make_user(app):
    def _make(email: str, name: str | None = None, password: str = PASSWORD) -> int:
        with session_scope(app) as s:
            u = User(
                email=email,
                name=name or email.split("@")[0].title(),
                password_hash=generate_password_hash(password),
                is_active=True,
            )
            s.add(u)
            s.flush()
            return u.id

    return _make


@pytest.fixture()
def login(client):
    def _login(email: str, password: str = PASSWORD):
        client.post("/auth/logout", json={})
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        return r.json["user"]

    return _login


@pytest.fixture()
def llm(app) -> FakeLLM:
    return app.extensions["llm_client"]
