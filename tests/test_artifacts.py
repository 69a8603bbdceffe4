"""Tests for artifact persistence rules (summaries, concepts, versions)."""
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.models.database_models import Concept, Document, Summary
from folio.models.schemas import ConceptPayload, ExercisePayload, MindMapPayload
from folio.services.artifacts import ArtifactStore, merge_occurrences, merge_related
from folio.services.diagram_validator import validate_diagram


async def _document(db: AsyncSession) -> Document:
    document = Document(
        owner_id="test-user-1",
        title="Plants",
        original_format="text",
        status="completed",
        extracted_text="Photosynthesis happens in chlorophyll.",
    )
    db.add(document)
    await db.commit()
    return document


def _concept(term: str, position: int, related=(), importance: int = 3) -> ConceptPayload:
    return ConceptPayload(
        term=term,
        definition=f"Definition of {term}",
        importance=importance,
        occurrences=[{"position": position, "context": term}],
        related_terms=list(related),
    )


# ---------------------------------------------------------------------------
# Pure merge helpers
# ---------------------------------------------------------------------------

def test_merge_occurrences_by_position():
    merged = merge_occurrences(
        [{"position": 10, "context": "old"}, {"position": 2, "context": "a"}],
        [{"position": 10, "context": "new"}],
    )
    assert merged == [{"position": 2, "context": "a"}, {"position": 10, "context": "new"}]


def test_merge_related_is_ordered_union():
    assert merge_related(["a", "b"], ["b", " ", "c"]) == ["a", "b", "c"]


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_summary_upsert_keeps_one_row_per_type(db_session: AsyncSession):
    store = ArtifactStore()
    document = await _document(db_session)

    first = await store.upsert_summary(db_session, document, "First take", language="en")
    await db_session.commit()
    second = await store.upsert_summary(db_session, document, "Second take", language="en")
    await db_session.commit()

    assert second.id == first.id
    assert second.version == 2

    rows = (await db_session.execute(select(Summary))).scalars().all()
    assert len(rows) == 1
    assert rows[0].content == "Second take"

    await store.upsert_summary(db_session, document, "Detailed", summary_type="detailed")
    await db_session.commit()
    summaries = await store.get_summaries(db_session, document.id)
    assert [s.type for s in summaries] == ["ai_generated", "detailed"]
    assert [s.type for s in await store.get_summaries(db_session, document.id, "detailed")] == ["detailed"]


# ---------------------------------------------------------------------------
# Concepts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_repeated_terms_merge_into_one_row(db_session: AsyncSession):
    store = ArtifactStore()
    document = await _document(db_session)

    await store.merge_concepts(
        db_session,
        document,
        [_concept("Cell", 0, related=["Nucleus"]), _concept("Cell", 25, related=["Membrane", "Cell"])],
    )
    await db_session.commit()
    await store.merge_concepts(db_session, document, [_concept("Cell", 40, importance=5)])
    await db_session.commit()

    rows = (await db_session.execute(select(Concept))).scalars().all()
    assert len(rows) == 1
    cell = rows[0]
    assert [o["position"] for o in cell.occurrences] == [0, 25, 40]
    assert cell.related_terms == ["Nucleus", "Membrane"]
    assert cell.importance == 5


@pytest.mark.asyncio
async def test_get_concepts_filters_and_orders(db_session: AsyncSession):
    store = ArtifactStore()
    document = await _document(db_session)
    await store.merge_concepts(
        db_session,
        document,
        [_concept("Beta", 1, importance=2), _concept("Alpha", 2, importance=4), _concept("Gamma", 3, importance=4)],
    )
    await db_session.commit()

    terms = [c.term for c in await store.get_concepts(db_session, document.id)]
    assert terms == ["Alpha", "Gamma", "Beta"]
    terms = [c.term for c in await store.get_concepts(db_session, document.id, min_importance=3, limit=1)]
    assert terms == ["Alpha"]


# ---------------------------------------------------------------------------
# Versioned artifacts and cascades
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_exercise_sets_and_mind_maps_are_versioned(db_session: AsyncSession):
    store = ArtifactStore()
    document = await _document(db_session)
    exercises = [
        ExercisePayload(type="short_answer", question="Why green?", correct_answer="Chlorophyll"),
        ExercisePayload(type="short_answer", question="Where?", correct_answer="Leaves"),
    ]

    first = await store.create_exercise_set(db_session, document, exercises, difficulty="hard")
    second = await store.create_exercise_set(db_session, document, exercises[:1])
    await db_session.commit()
    assert (first.version, second.version) == (1, 2)
    assert first.type_counts == {"short_answer": 2}

    payload = MindMapPayload(title="Map", diagram_source="mindmap\n  root")
    mind_map = await store.create_mind_map(db_session, document, payload, validate_diagram(payload.diagram_source))
    await db_session.commit()
    assert mind_map.version == 1
    assert mind_map.is_valid is True
    assert (await store.latest_mind_map(db_session, document.id)).id == mind_map.id


@pytest.mark.asyncio
async def test_soft_delete_then_purge(db_session: AsyncSession):
    store = ArtifactStore()
    document = await _document(db_session)
    await store.upsert_summary(db_session, document, "Summary")
    await store.merge_concepts(db_session, document, [_concept("Cell", 0)])
    await db_session.commit()

    await store.soft_delete_for_document(db_session, document.id)
    await db_session.commit()
    assert await store.get_summaries(db_session, document.id) == []
    assert await store.get_concepts(db_session, document.id) == []
    assert len((await db_session.execute(select(Summary))).scalars().all()) == 1

    await store.purge_for_document(db_session, document.id)
    await db_session.commit()
    assert (await db_session.execute(select(Summary))).scalars().all() == []
    assert (await db_session.execute(select(Concept))).scalars().all() == []
