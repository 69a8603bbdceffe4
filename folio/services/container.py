"""
Service wiring.

Everything stateful is built once at startup and stored on
``app.state.services``; routers reach it through ``get_services``.  Tests build
their own container with substitutes.
"""
from __future__ import annotations

import dataclasses
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from folio.services.annotator import AIAnnotator
from folio.services.artifacts import ArtifactStore
from folio.services.processor import AnnotationDefaults, DocumentProcessor
from folio.services.storage import ObjectStore, create_object_store
from folio.services.task_manager import TaskManager
from folio.services.text_extractor import TextExtractor


@dataclasses.dataclass
class Services:
    store: ObjectStore
    extractor: TextExtractor
    annotator: AIAnnotator
    artifacts: ArtifactStore
    tasks: TaskManager
    processor: DocumentProcessor


def build_services(
    settings,
    session_factory: async_sessionmaker,
    store: Optional[ObjectStore] = None,
    annotator: Optional[AIAnnotator] = None,
    extractor: Optional[TextExtractor] = None,
) -> Services:
    """Construct the service graph; any collaborator may be overridden."""
    store = store or create_object_store(settings)
    annotator = annotator or AIAnnotator.from_settings(settings)
    extractor = extractor or TextExtractor()
    artifacts = ArtifactStore()
    tasks = TaskManager(
        max_concurrent=settings.MAX_CONCURRENT_PROCESSING,
        max_background=settings.MAX_CONCURRENT_ANNOTATION,
    )
    defaults = AnnotationDefaults(
        enabled=settings.ANNOTATE_ON_COMPLETE,
        language=settings.ANNOTATION_LANGUAGE,
        style=settings.ANNOTATION_STYLE,
        summary_length=settings.SUMMARY_LENGTH,
        max_concepts=settings.MAX_CONCEPTS,
    )
    processor = DocumentProcessor(
        session_factory=session_factory,
        store=store,
        extractor=extractor,
        annotator=annotator,
        artifacts=artifacts,
        tasks=tasks,
        defaults=defaults,
    )
    return Services(
        store=store,
        extractor=extractor,
        annotator=annotator,
        artifacts=artifacts,
        tasks=tasks,
        processor=processor,
    )
