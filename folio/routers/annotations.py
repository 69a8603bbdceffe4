"""
AI artifact endpoints for a document.

Automatic artifacts (restructured text, summaries, concepts) answer 404 until
the background annotation has stored them.  Exercises and mind maps are
generated on demand and need the extracted text first.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from folio.database import get_db
from folio.dependencies.auth import get_owned_document
from folio.dependencies.services import get_services
from folio.errors import ArtifactNotReady
from folio.models.database_models import ConceptCategory, Document, SummaryType
from folio.models.schemas import (
    ConceptResponse,
    ExerciseGenerateRequest,
    ExerciseSetResponse,
    MindMapGenerateRequest,
    MindMapResponse,
    RestructuredTextResponse,
    SummaryResponse,
)
from folio.services.container import Services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/documents/{document_id}/ai/restructure", response_model=RestructuredTextResponse)
async def get_restructured_text(
    document: Document = Depends(get_owned_document),
) -> RestructuredTextResponse:
    if not document.restructured_text:
        raise ArtifactNotReady("Restructured text has not been generated yet.")
    return RestructuredTextResponse(document_id=document.id, content=document.restructured_text)


@router.get("/documents/{document_id}/ai/summary", response_model=List[SummaryResponse])
async def get_summaries(
    summary_type: Optional[SummaryType] = Query(None, alias="type"),
    document: Document = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> List[SummaryResponse]:
    summaries = await services.artifacts.get_summaries(
        db, document.id, summary_type.value if summary_type else None
    )
    if not summaries:
        raise ArtifactNotReady("No summary has been generated yet.")
    return [SummaryResponse.model_validate(s) for s in summaries]


@router.get("/documents/{document_id}/ai/concepts", response_model=List[ConceptResponse])
async def get_concepts(
    category: Optional[ConceptCategory] = Query(None),
    importance: Optional[int] = Query(None, ge=1, le=5, description="Minimum importance"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    document: Document = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> List[ConceptResponse]:
    concepts = await services.artifacts.get_concepts(
        db,
        document.id,
        category=category.value if category else None,
        min_importance=importance,
        limit=limit,
    )
    if not concepts:
        raise ArtifactNotReady("No concepts have been extracted yet.")
    return [ConceptResponse.model_validate(c) for c in concepts]


# ---------------------------------------------------------------------------
# On-demand generation
# ---------------------------------------------------------------------------

@router.post("/documents/{document_id}/ai/exercises", response_model=ExerciseSetResponse)
async def generate_exercises(
    body: Optional[ExerciseGenerateRequest] = Body(None),
    document: Document = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> ExerciseSetResponse:
    """Generate a new exercise set (stored as the next version)."""
    body = body or ExerciseGenerateRequest()
    exercise_set = await services.processor.generate_exercises(
        db,
        document,
        count=body.count,
        types=[t.value for t in body.types],
        difficulty=body.difficulty,
        language=body.language,
    )
    await db.commit()
    return ExerciseSetResponse.model_validate(exercise_set)


@router.get("/documents/{document_id}/ai/exercises", response_model=List[ExerciseSetResponse])
async def list_exercises(
    document: Document = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> List[ExerciseSetResponse]:
    sets = await services.artifacts.list_exercise_sets(db, document.id)
    if not sets:
        raise ArtifactNotReady("No exercises have been generated yet.")
    return [ExerciseSetResponse.model_validate(s) for s in sets]


@router.post("/documents/{document_id}/ai/mindmap", response_model=MindMapResponse)
async def generate_mind_map(
    body: Optional[MindMapGenerateRequest] = Body(None),
    document: Document = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> MindMapResponse:
    """Generate a diagram; its validation result is stored, never enforced."""
    body = body or MindMapGenerateRequest()
    mind_map = await services.processor.generate_mind_map(
        db,
        document,
        max_nodes=body.max_nodes,
        style=body.style,
        language=body.language,
    )
    await db.commit()
    return MindMapResponse.model_validate(mind_map)


@router.get("/documents/{document_id}/ai/mindmap", response_model=MindMapResponse)
async def get_mind_map(
    document: Document = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> MindMapResponse:
    mind_map = await services.artifacts.latest_mind_map(db, document.id)
    if mind_map is None:
        raise ArtifactNotReady("No mind map has been generated yet.")
    return MindMapResponse.model_validate(mind_map)
