"""
SQLAlchemy ORM models for the Folio database.

Every table carries the owner's user id, timestamps and an ``is_deleted``
flag.  Derived artifacts reference ``documents.id``; no ORM relationships are
declared, services query the child tables explicitly.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Boolean,
    JSON,
    UniqueConstraint,
)
from datetime import datetime, timezone
import enum
import uuid

from folio.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums
class DocumentFormat(str, enum.Enum):
    """Source formats a Document Record can originate from."""

    PDF = "pdf"
    DOCX = "docx"
    PPTX = "pptx"
    IMAGE = "image"
    URL = "url"
    TEXT = "text"


class DocumentStatus(str, enum.Enum):
    """Processing status persisted on the document row."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SummaryType(str, enum.Enum):
    AI_GENERATED = "ai_generated"
    MANUAL = "manual"
    ONELINE = "oneline"
    DETAILED = "detailed"
    KEYPOINTS = "keypoints"


class ConceptCategory(str, enum.Enum):
    PERSON = "person"
    PLACE = "place"
    CONCEPT = "concept"
    TERM = "term"
    FORMULA = "formula"
    THEORY = "theory"
    OTHER = "other"


class ExerciseType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


# Models
class Document(Base):
    """Uploaded file or registered URL with its extraction state."""

    __tablename__ = "documents"

    id = Column(String(32), primary_key=True, default=_new_id)
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    original_format = Column(String(20), nullable=False, index=True)
    storage_key = Column(String(512), nullable=True)  # NULL for url records
    source_url = Column(String(2048), nullable=True)

    extracted_text = Column(Text, nullable=False, default="")
    restructured_text = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=DocumentStatus.PENDING.value, index=True)
    processing_error = Column(Text, nullable=True)

    # size, mime_type, original_name, word_count, page_count, warnings
    metadata_json = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    version = Column(Integer, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    # Every flush checks and increments ``version``; a lost race raises StaleDataError
    __mapper_args__ = {"version_id_col": version}


class Summary(Base):
    """AI summary; at most one row per (document, type)."""

    __tablename__ = "summaries"
    __table_args__ = (
        UniqueConstraint("document_id", "type", name="uq_summaries_document_type"),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    document_id = Column(String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    type = Column(String(20), nullable=False, default=SummaryType.AI_GENERATED.value)
    content = Column(Text, nullable=False)
    language = Column(String(10), nullable=True)
    length = Column(String(20), nullable=True)
    version = Column(Integer, nullable=False, default=1)  # bumped on regeneration
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class Concept(Base):
    """Key term found in a document; (document, term) is unique."""

    __tablename__ = "concepts"
    __table_args__ = (
        UniqueConstraint("document_id", "term", name="uq_concepts_document_term"),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    document_id = Column(String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    term = Column(String(200), nullable=False)
    definition = Column(Text, nullable=False)
    category = Column(String(20), nullable=False, default=ConceptCategory.CONCEPT.value)
    importance = Column(Integer, nullable=False, default=3)  # 1-5
    occurrences = Column(JSON, nullable=False, default=list)  # [{position, context, confidence}]
    related_terms = Column(JSON, nullable=False, default=list)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class ExerciseSet(Base):
    """One generated batch of exercises; each generation is a new row."""

    __tablename__ = "exercise_sets"

    id = Column(String(32), primary_key=True, default=_new_id)
    document_id = Column(String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    difficulty = Column(String(20), nullable=True)
    language = Column(String(10), nullable=True)
    exercises = Column(JSON, nullable=False, default=list)
    type_counts = Column(JSON, nullable=False, default=dict)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class MindMap(Base):
    """Generated diagram source plus its advisory validation result."""

    __tablename__ = "mind_maps"

    id = Column(String(32), primary_key=True, default=_new_id)
    document_id = Column(String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    title = Column(String(255), nullable=False)
    diagram_source = Column(Text, nullable=False)
    diagram_type = Column(String(30), nullable=True)
    is_valid = Column(Boolean, nullable=False, default=False)
    validation_errors = Column(JSON, nullable=False, default=list)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
