import uuid
from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import all models so they register with Base.metadata for create_all
import tradeflow.models  # noqa: F401
from tradeflow.ai.compliance import RuleBasedCompliance
from tradeflow.ai.fallback import HeuristicExtractor
from tradeflow.ai.ocr import GeminiOCRService
from tradeflow.ai.processor import DocumentProcessor
from tradeflow.ai.quota_manager import QuotaManager
from tradeflow.ai.worker import DocumentProcessingQueue
from tradeflow.auth import create_access_token
from tradeflow.config import Settings
from tradeflow.models.base import Base
from tradeflow.models.document import Document, DocumentStatus, DocumentType
from tradeflow.models.user import User, UserRole, UserStatus
from tradeflow.services.notification_service import NotificationService

# Fresh in-memory SQLite per test; StaticPool keeps every session on one connection
TEST_DATABASE_URL = "sqlite+aiosqlite://"


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": TEST_DATABASE_URL,
        "gemini_api_key": "",
        "openai_api_key": "",
        "anthropic_api_key": "",
        "admin_forwarder_email": "forwarder@export.com",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings():
    return make_settings()


# ── Users ──


async def _add_user(db: AsyncSession, name: str, email: str, role: UserRole, **kwargs) -> User:
    user = User(id=uuid.uuid4(), name=name, email=email, role=role, status=UserStatus.ACTIVE, **kwargs)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def exporter(db_session) -> User:
    return await _add_user(db_session, "Asha Exports", "asha@exporter.com", UserRole.EXPORTER, company="Asha Exports Pvt Ltd")


@pytest.fixture
async def other_exporter(db_session) -> User:
    return await _add_user(db_session, "Bharat Traders", "bharat@exporter.com", UserRole.EXPORTER)


@pytest.fixture
async def admin_forwarder(db_session) -> User:
    return await _add_user(
        db_session, "Forwarder Admin", "forwarder@export.com", UserRole.FORWARDER, designation="Admin Forwarder"
    )


@pytest.fixture
async def sub_forwarders(db_session) -> list[User]:
    return [
        await _add_user(db_session, f"Stage Agent {i}", f"agent{i}@logistics.com", UserRole.FORWARDER, designation="Agent")
        for i in range(1, 4)
    ]


@pytest.fixture
async def admin_user(db_session) -> User:
    return await _add_user(db_session, "Platform Admin", "admin@tradeflow.io", UserRole.ADMIN)


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}

    return _headers


# ── Domain builders ──


@pytest.fixture
def make_document(db_session, tmp_path):
    async def _make(owner: User, *, content: str = "Invoice No: INV-1\nTotal: USD 100.00", document_type=DocumentType.INVOICE) -> Document:
        path = tmp_path / f"{uuid.uuid4().hex}.txt"
        path.write_text(content)
        document = Document(
            id=uuid.uuid4(),
            filename=path.name,
            original_filename="invoice.txt",
            file_path=str(path),
            file_type="txt",
            mime_type="text/plain",
            file_size=len(content),
            document_type=document_type,
            status=DocumentStatus.UPLOADING,
            uploaded_by_id=owner.id,
            entities=[],
            compliance_errors=[],
            compliance_corrections=[],
            compliance_recommendations=[],
        )
        db_session.add(document)
        await db_session.commit()
        return document

    return _make


# ── Application wiring ──


class RecordingScheduler:
    """Stands in for BackgroundTasks.add_task and keeps what was scheduled."""

    def __init__(self):
        self.calls = []

    def __call__(self, func, *args, **kwargs):
        self.calls.append((func, args, kwargs))

    @property
    def notifications(self) -> list[tuple[uuid.UUID, str]]:
        # args: session_factory, user_id, notification_type, message, data
        return [(args[1], args[2]) for _, args, _ in self.calls]


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def notifier(session_factory, scheduler) -> NotificationService:
    return NotificationService(session_factory, scheduler)


@pytest.fixture
def quota_manager() -> QuotaManager:
    return QuotaManager()


@pytest.fixture
def document_processor(test_settings, quota_manager) -> DocumentProcessor:
    return DocumentProcessor(
        test_settings,
        quota_manager,
        ocr_service=GeminiOCRService(test_settings),
        heuristic_extractor=HeuristicExtractor(),
        compliance_backends={},
        rule_engine=RuleBasedCompliance(),
    )


@pytest.fixture
def processing_queue() -> MagicMock:
    return MagicMock(spec=DocumentProcessingQueue)


@pytest.fixture
async def client(db_session, session_factory, notifier, quota_manager, document_processor, processing_queue, tmp_path):
    from tradeflow.config import settings
    from tradeflow.dependencies import (
        get_db,
        get_document_processor,
        get_notification_service,
        get_processing_queue,
        get_quota_manager,
        get_session_factory,
    )
    from tradeflow.main import app

    # Override upload dir to temp
    original_upload_dir = settings.upload_dir
    settings.upload_dir = str(tmp_path / "uploads")

    # No rollback on error: it would expire the fixtures' ORM objects mid-test
    async def override_get_db():
        yield db_session
        await db_session.commit()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notification_service] = lambda: notifier
    app.dependency_overrides[get_quota_manager] = lambda: quota_manager
    app.dependency_overrides[get_document_processor] = lambda: document_processor
    app.dependency_overrides[get_processing_queue] = lambda: processing_queue

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    settings.upload_dir = original_upload_dir
