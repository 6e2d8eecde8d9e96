"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("UPLOAD_DIR", "/tmp/fieldpost-test-uploads")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from fieldpost.main import app, limiter
from fieldpost.core.authz import AccessGuard
from fieldpost.core.config import Settings
from fieldpost.core.database import get_session
from fieldpost.core.deps import Components, get_components
from fieldpost.core.errors import UpstreamFailure
from fieldpost.core.identity import RoleDirectory
from fieldpost.core.security import SessionClaims, SessionCodec, get_password_hash
from fieldpost.models import Role, Submission, SubmissionStatus
from fieldpost.services.bot_detection import BotDetector
from fieldpost.services.drafting import PostGenerator
from fieldpost.services.notifications import Notifier
from fieldpost.services.photo_storage import PhotoStore, PhotoUpload
from fieldpost.services.rate_limit import MemoryRateLimitBackend, RateLimiters
from fieldpost.services.social import SocialPublisher, SocialPublishError


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ALICE = "alice@example.com"
BOB = "bob@example.com"
PRO = "pro@example.com"
LEADER = "leader@example.com"
LEADER_2 = "leader2@example.com"
PRO_PASSWORD = "pro-password"
DASHBOARD_PASSWORD = "dashboard-password"

_PRO_PASSWORD_HASH = get_password_hash(PRO_PASSWORD)


class FakeNotifier(Notifier):
    """Records emails instead of sending them."""

    def __init__(self):
        super().__init__("http://test")
        self.sent: list[dict] = []

    async def send(self, to_email, kind, code, *, role, submission_id=None, comment=None) -> None:
        self.sent.append(
            {
                "to": to_email,
                "kind": kind,
                "code": code,
                "role": role,
                "submission_id": submission_id,
                "comment": comment,
            }
        )


class FakePublisher(SocialPublisher):
    """Returns canned post IDs; set ``fail_facebook``/``fail_instagram`` to simulate outages."""

    def __init__(self, fail_facebook: bool = False, fail_instagram: bool = False):
        self.fail_facebook = fail_facebook
        self.fail_instagram = fail_instagram
        self.calls: list[tuple[str, str]] = []

    async def post_to_facebook(self, text, photo_urls):
        self.calls.append(("facebook", text))
        if self.fail_facebook:
            raise SocialPublishError("Facebook", "Failed to post to Facebook")
        return "fb_123"

    async def post_to_instagram(self, text, photo_url):
        self.calls.append(("instagram", text))
        if self.fail_instagram:
            raise SocialPublishError("Instagram", "Failed to post to Instagram")
        return "ig_456"


class FakeGenerator(PostGenerator):
    """Deterministic drafts without an LLM."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[str, str | None, str | None]] = []

    async def generate_post(self, notes, previous_text=None, feedback=None):
        self.calls.append((notes, previous_text, feedback))
        if self.fail:
            raise UpstreamFailure("Failed to generate post")
        if previous_text is None:
            return f"Draft: {notes[:40]}"
        return f"Revision {len(self.calls)}: {feedback or 'fresh take'}"


class FakePhotoStore(PhotoStore):
    def __init__(self):
        self.saved: list[PhotoUpload] = []

    async def save(self, files):
        self.saved.extend(files)
        return [f"https://cdn.example.com/{f.filename}" for f in files]


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "secret_key": "test-secret-key",
        "approved_team_emails": f"{ALICE}, {BOB}",
        "team_leader_email": f"{LEADER},{LEADER_2}",
        "pro_email": PRO,
        "pro_password_hash": _PRO_PASSWORD_HASH,
        "dashboard_password": DASHBOARD_PASSWORD,
        "rate_limit_backend": "memory",
        "resend_api_key": None,
    }
    values.update(overrides)
    return Settings(**values)


def make_components(settings: Settings | None = None, **overrides) -> Components:
    settings = settings or make_settings()
    codec = SessionCodec.from_settings(settings)
    directory = RoleDirectory.from_settings(settings)
    values = {
        "settings": settings,
        "codec": codec,
        "directory": directory,
        "guard": AccessGuard(codec, directory),
        "rate_limiters": RateLimiters.build(MemoryRateLimitBackend(), fail_closed=False),
        "notifier": FakeNotifier(),
        "publisher": FakePublisher(),
        "generator": FakeGenerator(),
        "bot_detector": BotDetector(enabled=True),
        "photo_store": FakePhotoStore(),
    }
    values.update(overrides)
    return Components(**values)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def components() -> Components:
    return make_components()


@pytest_asyncio.fixture(scope="function")
async def client(test_session, components) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with overridden dependencies."""

    async def override_get_session():
        yield test_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_components] = lambda: components
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def token_for(components: Components, email: str, role: Role, submission_id: str | None = None) -> str:
    """Sign a session token as if issued at login."""
    return components.codec.create(SessionClaims(email=email, role=role, submission_id=submission_id))


def auth_headers(token: str) -> dict:
    """Create authorization headers."""
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def alice_headers(components) -> dict:
    return auth_headers(token_for(components, ALICE, Role.TEAM_MEMBER))


@pytest.fixture
def bob_headers(components) -> dict:
    return auth_headers(token_for(components, BOB, Role.TEAM_MEMBER))


@pytest.fixture
def pro_headers(components) -> dict:
    return auth_headers(token_for(components, PRO, Role.PRO))


@pytest.fixture
def leader_headers(components) -> dict:
    return auth_headers(token_for(components, LEADER, Role.LEADER))


async def add_submission(
    session: AsyncSession,
    *,
    owner: str = ALICE,
    status: SubmissionStatus = SubmissionStatus.DRAFT,
    photo_paths: list[str] | None = None,
    final_post_text: str | None = "Draft: planted 40 oak saplings",
) -> Submission:
    """Insert a submission directly, bypassing the workflow."""
    submission = Submission(
        notes="Planted 40 oak saplings by the river",
        photo_paths=photo_paths or [],
        submitted_by_email=owner,
        status=status,
        final_post_text=final_post_text,
    )
    session.add(submission)
    await session.commit()
    await session.refresh(submission)
    return submission
