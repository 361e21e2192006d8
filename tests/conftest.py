import pytest

from auth import AuthError, AuthProvider, SessionStore
from models import Identity, Session
from repositories import InMemoryEntryRepository, InMemoryGoalRepository
from stores import EntryStore, GoalStore

APP_URL = "https://reflect.example.com"


class FakeAuthProvider(AuthProvider):
    """Signs in any email with oob code "good-code"; user ids are derived from the email."""

    def __init__(self):
        self.sent_links = []
        self.signed_out = []
        self.valid = True

    def send_sign_in_link(self, email, redirect_url):
        self.sent_links.append((email, redirect_url))

    def sign_in_with_link(self, email, oob_code):
        if oob_code != "good-code":
            raise AuthError("INVALID_OOB_CODE")
        return Session(user=Identity(id=f"uid-{email}", email=email), id_token="id-token", refresh_token="refresh")

    def validate(self, session):
        return session if self.valid else None

    def sign_out(self, session):
        self.signed_out.append(session.user.id)


@pytest.fixture
def identity():
    return Identity(id="user-1", email="ada@example.com")


@pytest.fixture
def goal_repo():
    return InMemoryGoalRepository()


@pytest.fixture
def entry_repo():
    return InMemoryEntryRepository()


@pytest.fixture
def goal_store(goal_repo):
    return GoalStore(goal_repo)


@pytest.fixture
def entry_store(entry_repo):
    return EntryStore(entry_repo)


@pytest.fixture
def auth_provider():
    return FakeAuthProvider()


@pytest.fixture
def session_store(auth_provider):
    return SessionStore(auth_provider, APP_URL)
