"""
Pydantic schemas for request/response validation.

The ``*Payload`` models describe what the language model must return; the
annotator validates raw model output against them before anything is persisted.
"""
from pydantic import (
    AliasChoices,
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

from folio.models.database_models import (
    ConceptCategory,
    DocumentFormat,
    DocumentStatus,
    ExerciseType,
    SummaryType,
)


# Document Schemas
class UrlDocumentCreate(BaseModel):
    """Body of POST /documents:url."""

    url: AnyHttpUrl
    title: Optional[str] = Field(None, max_length=255)
    tags: List[str] = Field(default_factory=list)


class DocumentResponse(BaseModel):
    """Schema for document responses."""

    id: str
    owner_id: str
    title: str
    original_format: DocumentFormat
    status: DocumentStatus
    processing_error: Optional[str] = None
    source_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("metadata_json", "metadata")
    )
    has_restructured_text: bool = False
    version: int
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("tags", "metadata", mode="before")
    @classmethod
    def _none_to_empty(cls, value, info):
        if value is None:
            return [] if info.field_name == "tags" else {}
        return value

    @classmethod
    def from_document(cls, document) -> "DocumentResponse":
        response = cls.model_validate(document)
        response.has_restructured_text = bool(document.restructured_text)
        return response


class ExtractedTextResponse(BaseModel):
    document_id: str
    text: str
    word_count: Optional[int] = None
    page_count: Optional[int] = None


class RestructuredTextResponse(BaseModel):
    document_id: str
    content: str


class DocumentStatsResponse(BaseModel):
    """Per-owner counts by format and status plus stored size."""

    total_documents: int
    total_size: int
    total_size_readable: str
    by_format: Dict[str, int]
    by_status: Dict[str, int]


class DeleteResponse(BaseModel):
    id: str
    deleted: bool = True
    purged: bool = False


# Artifact Schemas
class SummaryResponse(BaseModel):
    id: str
    document_id: str
    type: SummaryType
    content: str
    language: Optional[str] = None
    length: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConceptResponse(BaseModel):
    id: str
    document_id: str
    term: str
    definition: str
    category: ConceptCategory
    importance: int
    occurrences: List[Dict[str, Any]] = Field(default_factory=list)
    related_terms: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ExerciseSetResponse(BaseModel):
    id: str
    document_id: str
    version: int
    difficulty: Optional[str] = None
    language: Optional[str] = None
    exercises: List[Dict[str, Any]] = Field(default_factory=list)
    type_counts: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MindMapResponse(BaseModel):
    id: str
    document_id: str
    version: int
    title: str
    diagram_source: str
    diagram_type: Optional[str] = None
    is_valid: bool
    validation_errors: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ExerciseGenerateRequest(BaseModel):
    """Body of POST /documents/{id}/ai/exercises."""

    count: int = Field(10, ge=1, le=50)
    types: List[ExerciseType] = Field(
        default_factory=lambda: [
            ExerciseType.MULTIPLE_CHOICE,
            ExerciseType.TRUE_FALSE,
            ExerciseType.SHORT_ANSWER,
        ],
        min_length=1,
    )
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    language: Optional[str] = None


class MindMapGenerateRequest(BaseModel):
    """Body of POST /documents/{id}/ai/mindmap."""

    max_nodes: int = Field(30, ge=5, le=200)
    language: Optional[str] = None
    style: str = "hierarchical"


# Annotator output contracts
class OccurrencePayload(BaseModel):
    position: int = Field(..., ge=0)
    context: str = Field("", max_length=500)
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class ConceptPayload(BaseModel):
    term: str = Field(..., min_length=1, max_length=200)
    definition: str = Field(..., min_length=1, max_length=2000)
    category: ConceptCategory = ConceptCategory.CONCEPT
    importance: int = Field(3, ge=1, le=5)
    occurrences: List[OccurrencePayload] = Field(default_factory=list)
    related_terms: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("relatedTerms", "related_terms")
    )

    @field_validator("term", "definition", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("category", mode="before")
    @classmethod
    def _lower_category(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class ExercisePayload(BaseModel):
    type: ExerciseType
    question: str = Field(..., min_length=1)
    options: Optional[List[str]] = None
    correct_answer: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("correctAnswer", "correct_answer")
    )
    explanation: str = ""

    @field_validator("correct_answer", mode="before")
    @classmethod
    def _answer_to_str(cls, value):
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @model_validator(mode="after")
    def _check_shape(self) -> "ExercisePayload":
        if self.type == ExerciseType.MULTIPLE_CHOICE and len(self.options or []) < 2:
            raise ValueError("multiple_choice exercises need at least two options")
        if self.type == ExerciseType.TRUE_FALSE:
            answer = self.correct_answer.strip().lower()
            if answer not in ("true", "false"):
                raise ValueError("true_false answer must be true or false")
            self.correct_answer = answer
        return self


class MindMapPayload(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    diagram_source: str = Field(
        ..., min_length=1,
        validation_alias=AliasChoices("diagramSource", "diagram_source", "mermaid"),
    )


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    llm: str
    timestamp: datetime
