"""
Pytest configuration and fixtures.

Tests run against a temporary SQLite file through aiosqlite; every test gets
freshly created tables.
"""
import asyncio
import os
import tempfile
import uuid
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List

_TEST_DIR = tempfile.mkdtemp(prefix="orderflow-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/orderflow.db"
os.environ["ARTIFACT_DIR"] = os.path.join(_TEST_DIR, "artifacts")
os.environ["RENDERER_RETRY_BASE_DELAY"] = "0.01"
os.environ["RENDERER_TIMEOUT_SECONDS"] = "1"
os.environ["APP_ENV"] = "test"
os.environ["ADMIN_API_KEY"] = "test-admin-key"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from orderflow.core import (  # noqa: E402
    AuditTrail,
    DeliveryOrchestrator,
    NotificationDispatcher,
    OrderLedger,
    PaymentReconciler,
    ProductCatalog,
    RuntimeSettings,
    UserDirectory,
)
from orderflow.database.connection import close_db, get_engine  # noqa: E402
from orderflow.database.models import Base  # noqa: E402
from orderflow.database.store import Store  # noqa: E402
from orderflow.integrations import ArtifactStore, DocumentRenderer, RendererClient  # noqa: E402


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without a database")
    config.addinivalue_line("markers", "integration: tests against the SQLite store")
    config.addinivalue_line("markers", "race: concurrent request scenarios")


class RecordingRenderer(DocumentRenderer):
    """Renderer double that counts calls and can fail or stall on demand."""

    media_type = "text/plain; charset=utf-8"
    file_extension = "txt"

    def __init__(self, failures: int = 0, delay: float = 0.0):
        self.failures = failures
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def render(self, template: Dict[str, Any], data: Dict[str, Any]) -> bytes:
        self.calls.append({"template": template, "data": data})
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.calls) <= self.failures:
            raise RuntimeError("renderer crashed")
        score = data.get("score")
        return f"{template['name']}|score={score}|user={data['user_id']}".encode("utf-8")


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, Any]:
    """Fresh tables for one test."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest.fixture
def store(database: None) -> Store:
    return Store()


@pytest.fixture
def audit(store: Store) -> AuditTrail:
    return AuditTrail(store)


@pytest.fixture
def catalog(store: Store, audit: AuditTrail) -> ProductCatalog:
    return ProductCatalog(store, audit)


@pytest.fixture
def ledger(store: Store, audit: AuditTrail) -> OrderLedger:
    return OrderLedger(store, audit)


@pytest.fixture
def runtime_settings(store: Store, audit: AuditTrail) -> RuntimeSettings:
    return RuntimeSettings(store, audit)


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def artifact_dir(tmp_path: Any) -> Any:
    return tmp_path / "artifacts"


@pytest.fixture
def delivery(
    store: Store,
    audit: AuditTrail,
    renderer: RecordingRenderer,
    artifact_dir: Any,
    runtime_settings: RuntimeSettings,
) -> DeliveryOrchestrator:
    return DeliveryOrchestrator(
        store,
        audit,
        RendererClient(renderer),
        ArtifactStore(base_dir=str(artifact_dir)),
        runtime_settings,
    )


@pytest.fixture
def reconciler(
    store: Store, audit: AuditTrail, delivery: DeliveryOrchestrator
) -> PaymentReconciler:
    return PaymentReconciler(store, audit, delivery)


@pytest.fixture
def notifications(store: Store, audit: AuditTrail) -> NotificationDispatcher:
    return NotificationDispatcher(store, audit)


@pytest.fixture
def users(store: Store) -> UserDirectory:
    return UserDirectory(store)


@pytest_asyncio.fixture
async def product(catalog: ProductCatalog) -> Dict[str, Any]:
    """Active product priced 29.99 with two scored questions."""
    return await catalog.create_product(
        name="Math Practice Pack",
        price=Decimal("29.99"),
        description="Algebra warm-up",
        questions=[
            {"question": "2x + 5 = 15, x = ?", "options": ["5", "10", "15", "20"], "correct": 0},
            {"question": "sqrt(16) + sqrt(25) = ?", "options": ["7", "8", "9", "10"], "correct": 2},
        ],
    )


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()
