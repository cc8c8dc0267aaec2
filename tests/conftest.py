import pytest
from fastapi.testclient import TestClient

from labbook.config import Settings
from labbook.main import create_app
from labbook.notifications import Notifier
from labbook.security import Principal
from labbook.users import UserService

PASSWORD = "secret123"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def send_otp(self, email, code):
        self.sent.append((email, code))

    def last_code(self, email):
        return [code for to, code in self.sent if to == email][-1]


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", jwt_secret="test-secret", log_level="WARNING")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(settings, notifier):
    return create_app(settings, notifier=notifier)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db(client, app):
    session = app.state.SessionLocal()
    yield session
    session.close()


@pytest.fixture
def tokens(app):
    return app.state.tokens


@pytest.fixture
def make_user(db):
    def _make(email, role="lecturer", password=PASSWORD, first_name="Test", last_name="User"):
        return UserService(db).create(first_name, last_name, email, password, role)
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin@uni.edu", role="admin")


@pytest.fixture
def lecturer(make_user):
    return make_user("lecturer@uni.edu", role="lecturer")


@pytest.fixture
def headers(tokens):
    def _headers(user):
        return {"Authorization": f"Bearer {tokens.issue_session(user)}"}
    return _headers


def principal(user):
    return Principal(user_id=user.id, role=user.role)
