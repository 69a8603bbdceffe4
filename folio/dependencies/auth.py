"""
Authentication dependencies for FastAPI routes.

Verifies the bearer token (HS256 by default) and resolves the caller's user
id from its ``sub`` claim.  Tokens are issued elsewhere; this service only
checks them.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.config import settings
from folio.database import get_db
from folio.errors import AuthError, ForbiddenError, NotFoundOrForbidden
from folio.models.database_models import Document

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    """Verified JWT claims passed to route handlers."""

    sub: str
    role: str = "user"
    exp: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def decode_token(token: str) -> TokenPayload:
    """Verify signature and expiry; raise AuthError on any problem."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise AuthError("Token has expired") from exc
    except JWTError as exc:
        raise AuthError("Invalid token") from exc

    try:
        payload = TokenPayload.model_validate(claims)
    except PydanticValidationError as exc:
        raise AuthError("Token is missing required claims") from exc
    if not payload.sub:
        raise AuthError("Token is missing required claims")
    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> TokenPayload:
    """Return the verified token payload. Raises 401 if missing or invalid."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Missing bearer token")
    return decode_token(credentials.credentials)


async def get_current_user_id(user: TokenPayload = Depends(get_current_user)) -> str:
    return user.sub


async def require_admin(user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
    if not user.is_admin:
        raise ForbiddenError("Administrator role required")
    return user


async def get_owned_document(
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Document:
    """
    Load a non-deleted document owned by the caller.
    Absent, deleted and foreign documents all raise the same 404.
    """
    result = await db.execute(
        select(Document).where(
            Document.id == document_id,
            Document.owner_id == user_id,
            Document.is_deleted.is_(False),
        )
    )
    document = result.scalar_one_or_none()

    if document is None:
        raise NotFoundOrForbidden(f"Document {document_id} not found.")

    return document
