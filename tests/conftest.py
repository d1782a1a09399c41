import os
import tempfile
import uuid
from datetime import timedelta
from typing import Optional

# Point the app at throwaway databases before any fixit module reads the environment
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SYNC_DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="fixit-uploads-")
os.environ.pop("GEMINI_API_KEY", None)
os.environ.pop("FIREBASE_API_KEY", None)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from fixit.auth import Identity, IdentityProvider, IdentityProviderError, get_identity_provider  # noqa: E402
from fixit.database import models  # noqa: E402
from fixit.database.config import Base, get_db  # noqa: E402
from fixit.database.models import utcnow  # noqa: E402
from fixit.geocoding import Geocoder, get_geocoder  # noqa: E402
from fixit.llm_service import ImageClassification, LLMService, LLMServiceError, get_llm_service  # noqa: E402
from fixit.storage import ImageStore, get_image_store  # noqa: E402
from main import app  # noqa: E402

JPEG = b"\xff\xd8\xff\xe0fake-jpeg-bytes"


class FakeIdentityProvider(IdentityProvider):
    """Treats the bearer token as the Firebase uid."""

    async def verify(self, token: str) -> Identity:
        if token.startswith("invalid"):
            raise IdentityProviderError("Invalid token")
        return Identity(uid=token, email=f"{token}@example.com", email_verified=True)


class FakeImageStore(ImageStore):
    def __init__(self):
        self.uploads = []

    async def upload(self, content: bytes, content_type: str, folder: str = "issues") -> str:
        self.uploads.append((folder, content_type, len(content)))
        return f"https://img.test/{folder}/{len(self.uploads)}.jpg"

    def owns(self, url: str) -> bool:
        return url.startswith("https://img.test/")


class FakeGeocoder(Geocoder):
    def __init__(self, address: Optional[str] = "221 Civic Avenue, Springfield"):
        self.address = address
        self.calls = []

    async def reverse(self, lat: float, lng: float) -> Optional[str]:
        self.calls.append((lat, lng))
        return self.address


class FakeLLMService(LLMService):
    def __init__(self, classification: Optional[ImageClassification] = None, confidence: int = 91, fail: bool = False):
        self.classification = classification
        self.confidence = confidence
        self.fail = fail

    async def classify(self, image: bytes, mime_type: str) -> ImageClassification:
        if self.fail:
            raise LLMServiceError("model unavailable")
        return self.classification

    async def score_resolution(self, after, mime_type, before_url, description) -> int:
        if self.fail:
            raise LLMServiceError("model unavailable")
        return self.confidence


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def llm_service():
    """Replace to enable image analysis in a test; None means unconfigured."""
    return None


@pytest.fixture
async def client(session_factory, image_store, geocoder, llm_service):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_provider] = lambda: FakeIdentityProvider()
    app.dependency_overrides[get_image_store] = lambda: image_store
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    app.dependency_overrides[get_llm_service] = lambda: llm_service
    app.state.health_cache.invalidate()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    async def _make(name="Citizen", role="user", department=None, **fields) -> models.User:
        uid = fields.pop("firebase_uid", None) or f"uid-{uuid.uuid4().hex[:10]}"
        async with session_factory() as session:
            user = models.User(
                name=name,
                email=fields.pop("email", f"{uid}@example.com"),
                firebase_uid=uid,
                role=role,
                department=department,
                is_active=fields.pop("is_active", True),
                impact_score=fields.pop("impact_score", 0),
                level=fields.pop("level", 1),
                created_at=utcnow(),
                updated_at=utcnow(),
                **fields,
            )
            session.add(user)
            await session.commit()
            return user

    return _make


@pytest.fixture
def make_issue(session_factory):
    async def _make(
        reporter: Optional[models.User] = None,
        assignee: Optional[models.User] = None,
        status: str = "reported",
        category: str = "roads",
        age_hours: float = 0,
        in_progress_hours: Optional[float] = None,
        **fields,
    ) -> models.Issue:
        """Persist an issue created ``age_hours`` ago.

        ``in_progress_hours`` logs the move into in_progress that many hours ago.
        """
        now = utcnow()
        created_at = now - timedelta(hours=age_hours)
        issue = models.Issue(
            title=fields.pop("title", "Pothole on Main St"),
            description=fields.pop("description", "Large pothole next to the school crossing"),
            category=category,
            severity=fields.pop("severity", "medium"),
            priority=fields.pop("priority", "medium"),
            status=status,
            latitude=fields.pop("latitude", 12.9716),
            longitude=fields.pop("longitude", 77.5946),
            address=fields.pop("address", "Main St"),
            images=fields.pop("images", ["https://img.test/issues/before.jpg"]),
            tags=fields.pop("tags", []),
            anonymous=fields.pop("anonymous", False),
            is_active=fields.pop("is_active", True),
            reported_by_id=reporter.id if reporter else None,
            assigned_to_id=assignee.id if assignee else None,
            created_at=created_at,
            updated_at=created_at,
            **fields,
        )
        issue.status_logs.append(
            models.StatusLog(status="reported", changed_at=created_at, changed_by_id=issue.reported_by_id)
        )
        if in_progress_hours is not None:
            issue.status_logs.append(
                models.StatusLog(
                    status="in_progress",
                    changed_at=now - timedelta(hours=in_progress_hours),
                    changed_by_id=issue.assigned_to_id,
                )
            )
        async with session_factory() as session:
            session.add(issue)
            await session.commit()
            return issue

    return _make


@pytest.fixture
def fetch(session_factory):
    """Load a fresh copy of a row in a new session."""

    async def _fetch(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _fetch


@pytest.fixture
def notifications_for(session_factory):
    async def _list(user_id: str) -> list[models.Notification]:
        async with session_factory() as session:
            result = await session.execute(
                select(models.Notification)
                .where(models.Notification.user_id == user_id)
                .order_by(models.Notification.created_at)
            )
            return list(result.scalars().all())

    return _list


def auth(user: models.User) -> dict:
    return {"Authorization": f"Bearer {user.firebase_uid}"}
