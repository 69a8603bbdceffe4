"""
Persistence for AI-derived artifacts (summaries, concepts, exercise sets,
mind maps).

Write rules:
  - Summary: one row per (document, type); regeneration updates the row in
    place and bumps its ``version``.
  - Concept: one row per (document, term); a repeated term merges into the
    existing row (occurrences by position, related terms by union).
  - ExerciseSet / MindMap: every generation is a new row with the next
    ``version`` number.

Callers own the session and the commit.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from folio.models.database_models import (
    Concept,
    Document,
    ExerciseSet,
    MindMap,
    Summary,
    SummaryType,
)
from folio.models.schemas import ConceptPayload, ExercisePayload, MindMapPayload
from folio.services.diagram_validator import DiagramValidation

logger = logging.getLogger(__name__)

ARTIFACT_MODELS = (Summary, Concept, ExerciseSet, MindMap)


def merge_occurrences(
    existing: Iterable[Dict[str, Any]], incoming: Iterable[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Merge occurrence lists keyed by position; incoming entries win."""
    by_position: Dict[int, Dict[str, Any]] = {}
    for occ in list(existing) + list(incoming):
        by_position[int(occ["position"])] = dict(occ)
    return [by_position[pos] for pos in sorted(by_position)]


def merge_related(existing: Iterable[str], incoming: Iterable[str]) -> List[str]:
    """Ordered union without duplicates or blanks."""
    merged: List[str] = []
    for term in list(existing) + list(incoming):
        term = (term or "").strip()
        if term and term not in merged:
            merged.append(term)
    return merged


class ArtifactStore:
    """Reads and writes derived artifacts for a document."""

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def upsert_summary(
        self,
        db: AsyncSession,
        document: Document,
        content: str,
        summary_type: str = SummaryType.AI_GENERATED.value,
        language: Optional[str] = None,
        length: Optional[str] = None,
    ) -> Summary:
        summary = await self._find_summary(db, document.id, summary_type)
        if summary is None:
            summary = Summary(
                document_id=document.id,
                owner_id=document.owner_id,
                type=summary_type,
                content=content,
                language=language,
                length=length,
                version=1,
            )
            db.add(summary)
        else:
            self._refresh_summary(summary, content, language, length)

        await db.flush()
        logger.info(
            "Summary %s for document %s at version %d", summary_type, document.id, summary.version
        )
        return summary

    @staticmethod
    def _refresh_summary(
        summary: Summary, content: str, language: Optional[str], length: Optional[str]
    ) -> None:
        summary.content = content
        summary.language = language
        summary.length = length
        summary.version = (summary.version or 0) + 1
        summary.is_deleted = False

    @staticmethod
    async def _find_summary(db: AsyncSession, document_id: str, summary_type: str) -> Optional[Summary]:
        result = await db.execute(
            select(Summary).where(
                Summary.document_id == document_id,
                Summary.type == summary_type,
            )
        )
        return result.scalar_one_or_none()

    async def get_summaries(
        self, db: AsyncSession, document_id: str, summary_type: Optional[str] = None
    ) -> List[Summary]:
        query = select(Summary).where(
            Summary.document_id == document_id,
            Summary.is_deleted.is_(False),
        )
        if summary_type:
            query = query.where(Summary.type == summary_type)
        result = await db.execute(query.order_by(Summary.type))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Concepts
    # ------------------------------------------------------------------

    async def merge_concepts(
        self,
        db: AsyncSession,
        document: Document,
        payloads: Iterable[ConceptPayload],
    ) -> List[Concept]:
        """Insert new terms and merge repeated ones; returns the touched rows."""
        batch: Dict[str, Dict[str, Any]] = {}
        for payload in payloads:
            data = payload.model_dump(mode="json")
            term = data["term"]
            if term in batch:
                prev = batch[term]
                data["occurrences"] = merge_occurrences(prev["occurrences"], data["occurrences"])
                data["related_terms"] = merge_related(prev["related_terms"], data["related_terms"])
            batch[term] = data

        if not batch:
            return []

        result = await db.execute(
            select(Concept).where(
                Concept.document_id == document.id,
                Concept.term.in_(list(batch)),
            )
        )
        existing = {c.term: c for c in result.scalars().all()}

        touched: List[Concept] = []
        for term, data in batch.items():
            related = [t for t in merge_related([], data["related_terms"]) if t != term]
            concept = existing.get(term)
            if concept is None:
                concept = Concept(
                    document_id=document.id,
                    owner_id=document.owner_id,
                    term=term,
                    definition=data["definition"],
                    category=data["category"],
                    importance=data["importance"],
                    occurrences=merge_occurrences([], data["occurrences"]),
                    related_terms=related,
                )
                db.add(concept)
            else:
                concept.definition = data["definition"]
                concept.category = data["category"]
                concept.importance = data["importance"]
                # assign fresh lists so the JSON columns are marked dirty
                concept.occurrences = merge_occurrences(concept.occurrences or [], data["occurrences"])
                concept.related_terms = merge_related(concept.related_terms or [], related)
                concept.is_deleted = False
            touched.append(concept)

        await db.flush()
        logger.info(
            "Merged %d concepts for document %s (%d new)",
            len(touched),
            document.id,
            len(touched) - len(existing),
        )
        return touched

    async def get_concepts(
        self,
        db: AsyncSession,
        document_id: str,
        category: Optional[str] = None,
        min_importance: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Concept]:
        query = select(Concept).where(
            Concept.document_id == document_id,
            Concept.is_deleted.is_(False),
        )
        if category:
            query = query.where(Concept.category == category)
        if min_importance is not None:
            query = query.where(Concept.importance >= min_importance)
        query = query.order_by(Concept.importance.desc(), Concept.term)
        if limit:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Exercise sets / mind maps
    # ------------------------------------------------------------------

    async def create_exercise_set(
        self,
        db: AsyncSession,
        document: Document,
        exercises: List[ExercisePayload],
        difficulty: Optional[str] = None,
        language: Optional[str] = None,
    ) -> ExerciseSet:
        items = [e.model_dump(mode="json") for e in exercises]
        exercise_set = ExerciseSet(
            document_id=document.id,
            owner_id=document.owner_id,
            version=await self._next_version(db, ExerciseSet, document.id),
            difficulty=difficulty,
            language=language,
            exercises=items,
            type_counts=dict(Counter(item["type"] for item in items)),
        )
        db.add(exercise_set)
        await db.flush()
        logger.info(
            "Exercise set v%d for document %s (%d exercises)",
            exercise_set.version,
            document.id,
            len(items),
        )
        return exercise_set

    async def list_exercise_sets(self, db: AsyncSession, document_id: str) -> List[ExerciseSet]:
        result = await db.execute(
            select(ExerciseSet)
            .where(ExerciseSet.document_id == document_id, ExerciseSet.is_deleted.is_(False))
            .order_by(ExerciseSet.version.desc())
        )
        return list(result.scalars().all())

    async def create_mind_map(
        self,
        db: AsyncSession,
        document: Document,
        payload: MindMapPayload,
        validation: DiagramValidation,
    ) -> MindMap:
        mind_map = MindMap(
            document_id=document.id,
            owner_id=document.owner_id,
            version=await self._next_version(db, MindMap, document.id),
            title=payload.title,
            diagram_source=payload.diagram_source,
            diagram_type=validation.diagram_type,
            is_valid=validation.is_valid,
            validation_errors=list(validation.errors),
        )
        db.add(mind_map)
        await db.flush()
        if not validation.is_valid:
            logger.warning(
                "Mind map v%d for document %s failed validation: %s",
                mind_map.version,
                document.id,
                validation.errors,
            )
        return mind_map

    async def latest_mind_map(self, db: AsyncSession, document_id: str) -> Optional[MindMap]:
        result = await db.execute(
            select(MindMap)
            .where(MindMap.document_id == document_id, MindMap.is_deleted.is_(False))
            .order_by(MindMap.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _next_version(db: AsyncSession, model, document_id: str) -> int:
        result = await db.execute(
            select(func.max(model.version)).where(model.document_id == document_id)
        )
        return (result.scalar() or 0) + 1

    # ------------------------------------------------------------------
    # Cascades
    # ------------------------------------------------------------------

    async def soft_delete_for_document(self, db: AsyncSession, document_id: str) -> None:
        for model in ARTIFACT_MODELS:
            await db.execute(
                update(model)
                .where(model.document_id == document_id)
                .values(is_deleted=True)
                .execution_options(synchronize_session=False)
            )
        logger.info("Soft-deleted artifacts of document %s", document_id)

    async def purge_for_document(self, db: AsyncSession, document_id: str) -> None:
        for model in ARTIFACT_MODELS:
            await db.execute(
                delete(model)
                .where(model.document_id == document_id)
                .execution_options(synchronize_session=False)
            )
        logger.info("Purged artifacts of document %s", document_id)
