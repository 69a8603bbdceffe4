"""
Document upload and management endpoints.

POST   /documents                      - upload a file (multipart field ``document``)
POST   /documents:url                  - register a URL record
GET    /documents                      - list the caller's documents
GET    /documents/stats                - counts by format / status, stored size
GET    /documents/{id}                 - one record
GET    /documents/{id}/download        - original bytes
GET    /documents/{id}/extractedText   - normalized text once completed
POST   /documents/{id}/reprocess       - one more extraction attempt
DELETE /documents/{id}                 - soft delete (artifacts included)
"""
from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from folio.config import settings
from folio.database import get_db
from folio.dependencies.auth import get_current_user_id, get_owned_document
from folio.dependencies.services import get_services
from folio.errors import ArtifactNotReady, ConflictError, NotFoundOrForbidden, ValidationError
from folio.models.database_models import Document, DocumentFormat, DocumentStatus
from folio.models.schemas import (
    DeleteResponse,
    DocumentResponse,
    DocumentStatsResponse,
    ExtractedTextResponse,
    UrlDocumentCreate,
)
from folio.services.container import Services
from folio.services.storage import ObjectNotFound, build_storage_key
from folio.services.text_extractor import DOCX_MEDIA_TYPE, PDF_MEDIA_TYPE, URL_MEDIA_TYPE
from folio.utils.helpers import format_file_size, parse_tags, title_from_url

logger = logging.getLogger(__name__)

router = APIRouter()

# extension -> (format, canonical media type)
UPLOAD_TYPES: Dict[str, Tuple[DocumentFormat, str]] = {
    ".pdf": (DocumentFormat.PDF, PDF_MEDIA_TYPE),
    ".docx": (DocumentFormat.DOCX, DOCX_MEDIA_TYPE),
    ".pptx": (
        DocumentFormat.PPTX,
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ),
    ".png": (DocumentFormat.IMAGE, "image/png"),
    ".jpg": (DocumentFormat.IMAGE, "image/jpeg"),
    ".jpeg": (DocumentFormat.IMAGE, "image/jpeg"),
    ".gif": (DocumentFormat.IMAGE, "image/gif"),
    ".webp": (DocumentFormat.IMAGE, "image/webp"),
    ".txt": (DocumentFormat.TEXT, "text/plain"),
    ".md": (DocumentFormat.TEXT, "text/markdown"),
}

_TYPES_BY_MIME = {mime: (fmt, mime) for fmt, mime in UPLOAD_TYPES.values()}


def resolve_upload_type(filename: str, content_type: Optional[str]) -> Tuple[DocumentFormat, str]:
    """Pick format and media type from the extension, falling back to the declared type."""
    ext = Path(filename or "").suffix.lower()
    if ext in UPLOAD_TYPES:
        return UPLOAD_TYPES[ext]
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime in _TYPES_BY_MIME:
        return _TYPES_BY_MIME[mime]
    raise ValidationError(
        f"Unsupported file type '{ext or mime or 'unknown'}'. "
        f"Accepted: {', '.join(sorted(UPLOAD_TYPES))}"
    )


async def _commit(db: AsyncSession, document_id: str) -> None:
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConflictError(f"Document {document_id} was modified concurrently") from exc


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@router.post(
    "/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    document: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None, max_length=255),
    tags: Optional[str] = Form(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> DocumentResponse:
    """
    Upload a file and queue it for extraction.

    - Max file size: 50 MB (configurable via MAX_FILE_SIZE)
    - Returns immediately with the record in ``pending``
    """
    if document is None or not document.filename:
        raise ValidationError("No file uploaded; send it in the 'document' field.")

    fmt, media_type = resolve_upload_type(document.filename, document.content_type)

    data = await document.read(settings.MAX_FILE_SIZE + 1)
    if len(data) > settings.MAX_FILE_SIZE:
        raise ValidationError(
            f"File exceeds the {settings.MAX_FILE_SIZE // (1024 * 1024)} MB size limit."
        )
    if not data:
        raise ValidationError("Uploaded file is empty.")

    key = build_storage_key(user_id, document.filename)
    await services.store.put(key, data, media_type)

    record = Document(
        owner_id=user_id,
        title=(title or "").strip() or Path(document.filename).stem or document.filename,
        original_format=fmt.value,
        storage_key=key,
        status=DocumentStatus.PENDING.value,
        extracted_text="",
        metadata_json={
            "size": len(data),
            "mime_type": media_type,
            "original_name": document.filename,
        },
        tags=parse_tags(tags),
    )
    db.add(record)
    try:
        await db.commit()
    except Exception:
        await services.store.delete(key)
        raise

    logger.info("Uploaded %r as %s (%s, %d bytes)", document.filename, record.id, fmt.value, len(data))
    services.processor.schedule(record.id)
    return DocumentResponse.from_document(record)


@router.post(
    "/documents:url",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_url(
    body: UrlDocumentCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> DocumentResponse:
    """Register a URL record; the page itself is not fetched."""
    url = str(body.url)
    record = Document(
        owner_id=user_id,
        title=(body.title or "").strip() or title_from_url(url),
        original_format=DocumentFormat.URL.value,
        storage_key=None,
        source_url=url,
        status=DocumentStatus.PENDING.value,
        extracted_text="",
        metadata_json={"size": 0, "mime_type": URL_MEDIA_TYPE},
        tags=parse_tags(",".join(body.tags)),
    )
    db.add(record)
    await db.commit()

    logger.info("Registered URL %s as %s", url, record.id)
    services.processor.schedule(record.id)
    return DocumentResponse.from_document(record)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

@router.get("/documents", response_model=List[DocumentResponse])
async def list_documents(
    response: Response,
    fmt: Optional[DocumentFormat] = Query(None, alias="format"),
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[DocumentResponse]:
    """List the caller's non-deleted documents, newest first.  Total in ``X-Total-Count``."""
    conditions = [Document.owner_id == user_id, Document.is_deleted.is_(False)]
    if fmt is not None:
        conditions.append(Document.original_format == fmt.value)
    if status_filter is not None:
        conditions.append(Document.status == status_filter.value)
    if search:
        conditions.append(
            or_(
                Document.title.icontains(search, autoescape=True),
                Document.extracted_text.icontains(search, autoescape=True),
            )
        )

    total = (
        await db.execute(select(func.count(Document.id)).where(*conditions))
    ).scalar_one()
    result = await db.execute(
        select(Document)
        .where(*conditions)
        .order_by(Document.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    response.headers["X-Total-Count"] = str(total)
    return [DocumentResponse.from_document(d) for d in result.scalars().all()]


@router.get("/documents/stats", response_model=DocumentStatsResponse)
async def document_stats(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> DocumentStatsResponse:
    result = await db.execute(
        select(Document.original_format, Document.status, Document.metadata_json).where(
            Document.owner_id == user_id,
            Document.is_deleted.is_(False),
        )
    )
    rows = result.all()

    by_format: Counter = Counter()
    by_status: Counter = Counter()
    total_size = 0
    for fmt, doc_status, metadata in rows:
        by_format[fmt] += 1
        by_status[doc_status] += 1
        total_size += int((metadata or {}).get("size") or 0)

    return DocumentStatsResponse(
        total_documents=len(rows),
        total_size=total_size,
        total_size_readable=format_file_size(total_size),
        by_format=dict(by_format),
        by_status=dict(by_status),
    )


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(document: Document = Depends(get_owned_document)) -> DocumentResponse:
    return DocumentResponse.from_document(document)


@router.get("/documents/{document_id}/download")
async def download_document(
    document: Document = Depends(get_owned_document),
    services: Services = Depends(get_services),
) -> Response:
    if not document.storage_key:
        raise NotFoundOrForbidden("Document has no stored file.")
    try:
        data = await services.store.get(document.storage_key)
    except ObjectNotFound as exc:
        raise NotFoundOrForbidden("Stored file not found.") from exc

    metadata = document.metadata_json or {}
    filename = metadata.get("original_name") or document.title
    return Response(
        content=data,
        media_type=metadata.get("mime_type") or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@router.get("/documents/{document_id}/extractedText", response_model=ExtractedTextResponse)
async def get_extracted_text(document: Document = Depends(get_owned_document)) -> ExtractedTextResponse:
    if document.status != DocumentStatus.COMPLETED.value:
        raise ArtifactNotReady("Text has not been extracted yet.")
    metadata = document.metadata_json or {}
    return ExtractedTextResponse(
        document_id=document.id,
        text=document.extracted_text,
        word_count=metadata.get("word_count"),
        page_count=metadata.get("page_count"),
    )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

@router.post("/documents/{document_id}/reprocess", response_model=DocumentResponse)
async def reprocess_document(
    document: Document = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> DocumentResponse:
    """Run extraction once more and return the updated record."""
    if (
        document.status == DocumentStatus.PROCESSING.value
        or services.tasks.is_running(document.id)
    ):
        raise ValidationError("Document is currently being processed.")

    await services.processor.reprocess(document.id)
    await db.refresh(document)
    return DocumentResponse.from_document(document)


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(
    document: Document = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> DeleteResponse:
    """Soft delete: the record and its artifacts disappear, the blob stays."""
    document.is_deleted = True
    await services.artifacts.soft_delete_for_document(db, document.id)
    await _commit(db, document.id)
    logger.info("Soft-deleted document %s", document.id)
    return DeleteResponse(id=document.id, deleted=True)
