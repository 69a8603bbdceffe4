"""
Shared fixtures for Folio backend integration tests.

Runs against a throwaway SQLite database (``sqlite+aiosqlite``) unless
TEST_DATABASE_URL points somewhere else.  Tables are dropped and recreated for
every test.  The service container is rebuilt per test with a local object
store in ``tmp_path`` and a scripted annotator, so no network is needed.
"""
from __future__ import annotations

import asyncio
import os
import tempfile
import time
from typing import AsyncGenerator, List, Optional, Set

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession

# Override settings *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB.
_TEST_DIR = tempfile.mkdtemp(prefix="folio-tests-")
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{_TEST_DIR}/folio_test.db",
)
TEST_JWT_SECRET = "folio-test-secret"

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = TEST_JWT_SECRET
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_DIR, "uploads")
os.environ["ANNOTATE_ON_COMPLETE"] = "true"

from folio.config import settings  # noqa: E402
from folio.database import AsyncSessionLocal, Base, engine  # noqa: E402
from folio.errors import UpstreamUnavailable  # noqa: E402
from folio.main import app  # noqa: E402
from folio.models import database_models  # noqa: E402,F401
from folio.models.schemas import (  # noqa: E402
    ConceptPayload,
    ExercisePayload,
    MindMapPayload,
)
from folio.services.container import Services, build_services  # noqa: E402
from folio.services.storage import LocalObjectStore  # noqa: E402


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class GatedObjectStore(LocalObjectStore):
    """Local store whose reads wait for ``release`` (set by default)."""

    def __init__(self, root: str) -> None:
        super().__init__(root)
        self.release = asyncio.Event()
        self.release.set()

    async def get(self, key: str) -> bytes:
        await self.release.wait()
        return await super().get(key)


class FakeAnnotator:
    """
    Scripted stand-in for AIAnnotator.

    ``summary_gate`` holds summarize() until set; names in ``fail`` raise
    UpstreamUnavailable.
    """

    def __init__(self) -> None:
        self.summary_gate = asyncio.Event()
        self.summary_gate.set()
        self.fail: Set[str] = set()
        self.calls: List[str] = []
        self.healthy = True
        self.diagram_source = "mindmap\n  root\n    child one\n    child two"

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise UpstreamUnavailable(f"{name} is down")

    async def restructure(self, text: str, style: str = "structured", language: str = "en") -> str:
        self._enter("restructure")
        return "# Restructured\n\n" + text[:200]

    async def summarize(
        self,
        text: str,
        length: str = "medium",
        language: str = "en",
        include_key_points: bool = True,
    ) -> str:
        await self.summary_gate.wait()
        self._enter("summarize")
        return "A short summary of the document."

    async def extract_concepts(
        self, text: str, max_concepts: int = 20, language: str = "en"
    ) -> List[ConceptPayload]:
        self._enter("extract_concepts")
        return [
            ConceptPayload(
                term="Photosynthesis",
                definition="How plants turn light into chemical energy.",
                category="concept",
                importance=5,
                occurrences=[{"position": 0, "context": "Photosynthesis is", "confidence": 0.9}],
                related_terms=["Chlorophyll"],
            ),
            ConceptPayload(
                term="Chlorophyll",
                definition="Green pigment that absorbs light.",
                category="term",
                importance=3,
                occurrences=[{"position": 42, "context": "chlorophyll absorbs"}],
                related_terms=["Photosynthesis"],
            ),
        ][:max_concepts]

    async def generate_exercises(
        self,
        text: str,
        count: int = 10,
        types=("multiple_choice", "true_false", "short_answer"),
        difficulty: str = "medium",
        language: str = "en",
    ) -> List[ExercisePayload]:
        self._enter("generate_exercises")
        return [
            ExercisePayload(
                type="multiple_choice",
                question="What do plants need?",
                options=["Light", "Sound"],
                correct_answer="Light",
                explanation="Photosynthesis uses light.",
            ),
            ExercisePayload(
                type="true_false",
                question="Chlorophyll is green.",
                correct_answer=True,
            ),
        ][:count]

    async def generate_mind_map(
        self,
        text: str,
        max_nodes: int = 30,
        language: str = "en",
        style: str = "hierarchical",
    ) -> MindMapPayload:
        self._enter("generate_mind_map")
        return MindMapPayload(title="Document map", diagram_source=self.diagram_source)

    async def check_health(self) -> bool:
        return self.healthy


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def services(db_engine, tmp_path) -> AsyncGenerator[Services, None]:
    """Service container wired into the app for this test."""
    store = GatedObjectStore(str(tmp_path / "blobs"))
    annotator = FakeAnnotator()
    container = build_services(settings, AsyncSessionLocal, store=store, annotator=annotator)
    app.state.services = container

    yield container

    store.release.set()
    annotator.summary_gate.set()
    await container.tasks.shutdown(timeout=5.0)


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient wired to the FastAPI app (lifespan not run)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_token(
    sub: Optional[str],
    role: str = "user",
    expires_in: int = 3600,
    secret: str = TEST_JWT_SECRET,
) -> str:
    claims = {"role": role, "exp": int(time.time()) + expires_in}
    if sub is not None:
        claims["sub"] = sub
    return jwt.encode(claims, secret, algorithm="HS256")


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


AUTH_HEADERS = bearer(make_token("test-user-1"))

AUTH_HEADERS_USER2 = bearer(make_token("test-user-2"))

ADMIN_HEADERS = bearer(make_token("admin-user", role="admin"))


async def wait_for_extraction(services: Services, document_id: str):
    """Block until the keyed extraction task for *document_id* has finished."""
    task = services.tasks.get(document_id)
    if task is not None:
        await asyncio.gather(task, return_exceptions=True)
