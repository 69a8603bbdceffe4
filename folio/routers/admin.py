"""
Administrative endpoints.

DELETE /admin/documents/{id} - hard purge: artifacts, the record and the stored blob.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from folio.database import get_db
from folio.dependencies.auth import TokenPayload, require_admin
from folio.dependencies.services import get_services
from folio.errors import ConflictError, NotFoundOrForbidden
from folio.models.database_models import Document
from folio.models.schemas import DeleteResponse
from folio.services.container import Services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.delete("/admin/documents/{document_id}", response_model=DeleteResponse)
async def purge_document(
    document_id: str,
    admin: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> DeleteResponse:
    """Remove a document for good, whether or not it was soft-deleted."""
    result = await db.execute(select(Document).where(Document.id == document_id))
    document = result.scalar_one_or_none()
    if document is None:
        raise NotFoundOrForbidden(f"Document {document_id} not found.")

    storage_key = document.storage_key
    await services.artifacts.purge_for_document(db, document_id)
    await db.delete(document)
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConflictError(f"Document {document_id} was modified concurrently") from exc

    if storage_key:
        try:
            await services.store.delete(storage_key)
        except Exception as exc:
            # rows are already gone; the orphaned blob is only logged
            logger.error("Purge of %s left blob %s behind: %s", document_id, storage_key, exc, exc_info=True)

    logger.warning("Document %s purged by %s", document_id, admin.sub)
    return DeleteResponse(id=document_id, deleted=True, purged=True)
