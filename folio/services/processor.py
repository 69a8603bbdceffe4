"""
Processing orchestrator: drives a Document Record from upload to a terminal
extraction state and triggers best-effort AI annotation.

Flow per document
-----------------
    schedule(id)
      └─ TaskManager.submit(id, ...)            one extraction per document
           extract(id)
             session 1: Pending/Failed/Completed -> Processing, commit
             (no session) load blob, run TextExtractor in a worker thread
             session 2: Processing -> Completed(text) | Failed(error), commit
           on Completed: TaskManager.spawn(annotate(id))
             restructure | summary | concepts run concurrently; each one is
             isolated, logged and never re-raised.

Every document write goes through the ORM so the ``version`` column is
checked and bumped; a lost race surfaces as ``ConflictError``.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from folio.errors import (
    AnnotationError,
    ConflictError,
    ExtractionError,
    ProcessingFailed,
    ValidationError,
)
from folio.models.database_models import (
    Document,
    DocumentFormat,
    DocumentStatus,
    ExerciseSet,
    MindMap,
    SummaryType,
)
from folio.services.annotator import AIAnnotator
from folio.services.artifacts import ArtifactStore
from folio.services.diagram_validator import validate_diagram
from folio.services.processing_state import (
    Completed,
    Failed,
    InvalidTransition,
    ProcessingState,
    apply_state,
    begin,
    finish,
    state_of,
)
from folio.services.storage import ObjectNotFound, ObjectStore
from folio.services.task_manager import TaskAlreadyRunning, TaskManager
from folio.services.text_extractor import URL_MEDIA_TYPE, TextExtractor, count_words
from folio.utils.helpers import truncate_text

logger = logging.getLogger(__name__)

MAX_ERROR_CHARS = 1000


@dataclasses.dataclass
class AnnotationDefaults:
    """Parameters for the automatic annotation pass after extraction."""

    enabled: bool = True
    language: str = "en"
    style: str = "structured"
    summary_length: str = "medium"
    max_concepts: int = 20
    summary_type: str = SummaryType.AI_GENERATED.value


class DocumentProcessor:
    """Owns the extraction state machine and the annotation fan-out."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        store: ObjectStore,
        extractor: TextExtractor,
        annotator: AIAnnotator,
        artifacts: ArtifactStore,
        tasks: TaskManager,
        defaults: Optional[AnnotationDefaults] = None,
    ) -> None:
        self.session_factory = session_factory
        self.store = store
        self.extractor = extractor
        self.annotator = annotator
        self.artifacts = artifacts
        self.tasks = tasks
        self.defaults = defaults or AnnotationDefaults()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def schedule(self, document_id: str) -> asyncio.Task:
        """Start background extraction (then annotation) for a new record."""
        return self.tasks.submit(document_id, self._extract_then_annotate(document_id))

    async def reprocess(self, document_id: str) -> ProcessingState:
        """
        Run exactly one more extraction attempt and wait for its outcome.

        Raises:
            ValidationError:  The document is already being processed.
            ProcessingFailed: The attempt ended in ``failed`` again.
            ConflictError:    Another writer changed the record meanwhile.
        """
        try:
            task = self.tasks.submit(document_id, self.extract(document_id))
        except TaskAlreadyRunning as exc:
            raise ValidationError("Document is currently being processed") from exc

        try:
            state = await asyncio.shield(task)
        except InvalidTransition as exc:
            raise ValidationError(str(exc)) from exc

        if isinstance(state, Failed):
            raise ProcessingFailed(f"Reprocessing failed: {state.error}")
        if isinstance(state, Completed):
            self._spawn_annotation(document_id)
        return state

    async def _extract_then_annotate(self, document_id: str) -> Optional[ProcessingState]:
        state = await self.extract(document_id)
        if isinstance(state, Completed):
            self._spawn_annotation(document_id)
        return state

    def _spawn_annotation(self, document_id: str) -> None:
        if not self.defaults.enabled:
            return
        if self.tasks.closed:
            logger.info("Skipping annotation of %s, task manager is shut down", document_id)
            return
        self.tasks.spawn(self.annotate(document_id), label=f"annotate:{document_id}")

    async def recover_interrupted(self) -> int:
        """Mark records left in ``processing`` by a previous process as failed."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Document).where(
                    Document.status == DocumentStatus.PROCESSING.value,
                    Document.is_deleted.is_(False),
                )
            )
            documents = list(result.scalars().all())
            for document in documents:
                if self.tasks.is_running(document.id):
                    continue
                apply_state(
                    document,
                    finish(state_of(document), Failed(error="Processing was interrupted; reprocess to retry")),
                )
            await db.commit()
        if documents:
            logger.warning("Marked %d interrupted documents as failed", len(documents))
        return len(documents)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def extract(self, document_id: str) -> Optional[ProcessingState]:
        """
        One extraction attempt.  Returns the terminal state written, or None
        when the record vanished (deleted or purged) before it could start.
        """
        async with self.session_factory() as db:
            document = await self._load(db, document_id)
            if document is None:
                logger.warning("Document %s is gone; extraction skipped", document_id)
                return None
            apply_state(document, begin(state_of(document)))
            await self._commit(db, document_id)

            fmt = document.original_format
            storage_key = document.storage_key
            source_url = document.source_url
            media_type = (document.metadata_json or {}).get("mime_type", "")

        logger.info("Extracting document %s (%s, %s)", document_id, fmt, media_type)

        result = None
        try:
            if fmt == DocumentFormat.URL.value:
                buffer = (source_url or "").encode("utf-8")
                media_type = URL_MEDIA_TYPE
            else:
                buffer = await self.store.get(storage_key)
            result = await asyncio.to_thread(self.extractor.extract, buffer, media_type)
            outcome = Completed(text=result.text)
        except ExtractionError as exc:
            outcome = Failed(error=truncate_text(exc.message, MAX_ERROR_CHARS))
        except ObjectNotFound:
            outcome = Failed(error="Stored file is missing")
        except Exception as exc:
            logger.error("Unexpected extraction error for %s: %s", document_id, exc, exc_info=True)
            outcome = Failed(error=truncate_text(f"Unexpected extraction error: {exc}", MAX_ERROR_CHARS))

        async with self.session_factory() as db:
            document = await self._load(db, document_id)
            if document is None:
                logger.warning("Document %s was deleted during extraction; result dropped", document_id)
                return None
            try:
                final = finish(state_of(document), outcome)
            except InvalidTransition as exc:
                raise ConflictError(
                    f"Document {document_id} changed state during extraction ({document.status})"
                ) from exc

            apply_state(document, final)
            metadata = dict(document.metadata_json or {})
            if result is not None:
                metadata["word_count"] = count_words(result.text)
                metadata["page_count"] = result.page_count
                metadata["warnings"] = list(result.warnings)
                if result.metadata:
                    metadata["properties"] = dict(result.metadata)
            else:
                metadata["word_count"] = 0
            document.metadata_json = metadata
            document.processed_at = datetime.now(timezone.utc)
            await self._commit(db, document_id)

        if isinstance(final, Failed):
            logger.warning("Extraction failed for %s: %s", document_id, final.error)
        else:
            logger.info(
                "Extraction completed for %s (%d words)", document_id, metadata["word_count"]
            )
        return final

    # ------------------------------------------------------------------
    # Automatic annotation
    # ------------------------------------------------------------------

    async def annotate(self, document_id: str) -> None:
        """Produce restructured text, a summary and concepts; failures stay local."""
        async with self.session_factory() as db:
            document = await self._load(db, document_id)
            if document is None or document.status != DocumentStatus.COMPLETED.value:
                logger.info("Document %s not ready for annotation; skipped", document_id)
                return
            text = document.extracted_text

        await asyncio.gather(
            self._guard("restructure", document_id, self._restructure(document_id, text)),
            self._guard("summary", document_id, self._summarize(document_id, text)),
            self._guard("concepts", document_id, self._extract_concepts(document_id, text)),
        )

    async def _guard(self, artifact: str, document_id: str, coro) -> bool:
        try:
            await coro
            logger.info("Annotation %s stored for %s", artifact, document_id)
            return True
        except AnnotationError as exc:
            logger.warning("Annotation %s failed for %s: %s", artifact, document_id, exc.message)
        except Exception as exc:
            logger.error(
                "Annotation %s crashed for %s: %s", artifact, document_id, exc, exc_info=True
            )
        return False

    async def _restructure(self, document_id: str, text: str) -> None:
        content = await self.annotator.restructure(
            text, style=self.defaults.style, language=self.defaults.language
        )
        async with self.session_factory() as db:
            document = await self._load_completed(db, document_id)
            document.restructured_text = content
            await self._commit(db, document_id)

    async def _summarize(self, document_id: str, text: str) -> None:
        content = await self.annotator.summarize(
            text,
            length=self.defaults.summary_length,
            language=self.defaults.language,
            include_key_points=True,
        )
        async with self.session_factory() as db:
            document = await self._load_completed(db, document_id)
            await self.artifacts.upsert_summary(
                db,
                document,
                content,
                summary_type=self.defaults.summary_type,
                language=self.defaults.language,
                length=self.defaults.summary_length,
            )
            await db.commit()

    async def _extract_concepts(self, document_id: str, text: str) -> None:
        concepts = await self.annotator.extract_concepts(
            text, max_concepts=self.defaults.max_concepts, language=self.defaults.language
        )
        async with self.session_factory() as db:
            document = await self._load_completed(db, document_id)
            await self.artifacts.merge_concepts(db, document, concepts)
            await db.commit()

    # ------------------------------------------------------------------
    # On-demand generation (request-scoped session)
    # ------------------------------------------------------------------

    async def generate_exercises(
        self,
        db: AsyncSession,
        document: Document,
        count: int,
        types: Sequence[str],
        difficulty: str,
        language: Optional[str] = None,
    ) -> ExerciseSet:
        self._require_text(document)
        language = language or self.defaults.language
        exercises = await self.annotator.generate_exercises(
            document.extracted_text,
            count=count,
            types=types,
            difficulty=difficulty,
            language=language,
        )
        return await self.artifacts.create_exercise_set(
            db, document, exercises, difficulty=difficulty, language=language
        )

    async def generate_mind_map(
        self,
        db: AsyncSession,
        document: Document,
        max_nodes: int,
        style: str,
        language: Optional[str] = None,
    ) -> MindMap:
        self._require_text(document)
        payload = await self.annotator.generate_mind_map(
            document.extracted_text,
            max_nodes=max_nodes,
            language=language or self.defaults.language,
            style=style,
        )
        validation = validate_diagram(payload.diagram_source)
        return await self.artifacts.create_mind_map(db, document, payload, validation)

    @staticmethod
    def _require_text(document: Document) -> None:
        if document.status != DocumentStatus.COMPLETED.value:
            raise ValidationError("Text has not been extracted yet")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _load(db: AsyncSession, document_id: str) -> Optional[Document]:
        result = await db.execute(
            select(Document).where(
                Document.id == document_id,
                Document.is_deleted.is_(False),
            )
        )
        return result.scalar_one_or_none()

    async def _load_completed(self, db: AsyncSession, document_id: str) -> Document:
        document = await self._load(db, document_id)
        if document is None or document.status != DocumentStatus.COMPLETED.value:
            raise ConflictError(f"Document {document_id} is no longer completed")
        return document

    @staticmethod
    async def _commit(db: AsyncSession, document_id: str) -> None:
        try:
            await db.commit()
        except StaleDataError as exc:
            await db.rollback()
            raise ConflictError(f"Document {document_id} was modified concurrently") from exc
