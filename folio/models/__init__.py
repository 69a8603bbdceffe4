"""Database and schema models for Folio."""
from folio.models.database_models import (
    Document,
    Summary,
    Concept,
    ExerciseSet,
    MindMap,
    DocumentFormat,
    DocumentStatus,
    SummaryType,
    ConceptCategory,
    ExerciseType,
)
from folio.models.schemas import (
    UrlDocumentCreate,
    DocumentResponse,
    DocumentStatsResponse,
    ExtractedTextResponse,
    SummaryResponse,
    ConceptResponse,
    ExerciseSetResponse,
    MindMapResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "Document",
    "Summary",
    "Concept",
    "ExerciseSet",
    "MindMap",
    "DocumentFormat",
    "DocumentStatus",
    "SummaryType",
    "ConceptCategory",
    "ExerciseType",
    # Pydantic schemas
    "UrlDocumentCreate",
    "DocumentResponse",
    "DocumentStatsResponse",
    "ExtractedTextResponse",
    "SummaryResponse",
    "ConceptResponse",
    "ExerciseSetResponse",
    "MindMapResponse",
    "HealthCheckResponse",
]
