"""Tests for authentication boundaries.

Verifies that document endpoints require a valid bearer token and that
users cannot see each other's documents.
"""
import pytest
from httpx import AsyncClient

from tests.conftest import (
    AUTH_HEADERS,
    AUTH_HEADERS_USER2,
    bearer,
    make_token,
)


async def _upload(client: AsyncClient, headers=AUTH_HEADERS) -> str:
    resp = await client.post(
        "/api/documents",
        files={"document": ("notes.txt", b"Private notes about photosynthesis.", "text/plain")},
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json()["id"]


@pytest.mark.asyncio
async def test_list_requires_token(client: AsyncClient):
    """GET /api/documents without a bearer token should return 401."""
    resp = await client.get("/api/documents")
    assert resp.status_code == 401
    assert resp.json()["error"] == "unauthorized"


@pytest.mark.asyncio
async def test_upload_requires_token(client: AsyncClient):
    resp = await client.post(
        "/api/documents",
        files={"document": ("notes.txt", b"hello", "text/plain")},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_garbage_token_rejected(client: AsyncClient):
    resp = await client.get("/api/documents", headers=bearer("not-a-jwt"))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_expired_token_rejected(client: AsyncClient):
    resp = await client.get(
        "/api/documents",
        headers=bearer(make_token("test-user-1", expires_in=-60)),
    )
    assert resp.status_code == 401
    assert "expired" in resp.json()["detail"].lower()


@pytest.mark.asyncio
async def test_wrong_secret_rejected(client: AsyncClient):
    resp = await client.get(
        "/api/documents",
        headers=bearer(make_token("test-user-1", secret="someone-elses-secret")),
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_token_without_subject_rejected(client: AsyncClient):
    resp = await client.get("/api/documents", headers=bearer(make_token(None)))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_valid_token_lists_nothing(client: AsyncClient):
    resp = await client.get("/api/documents", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_wrong_user_cannot_read_document(client: AsyncClient, services):
    """User 2 should get 404 (not 403) for user 1's document."""
    document_id = await _upload(client)
    await services.tasks.drain()

    resp = await client.get(f"/api/documents/{document_id}", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404

    resp = await client.get(
        f"/api/documents/{document_id}/extractedText", headers=AUTH_HEADERS_USER2
    )
    assert resp.status_code == 404

    resp = await client.get(f"/api/documents/{document_id}/ai/summary", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_wrong_user_cannot_delete_document(client: AsyncClient, services):
    document_id = await _upload(client)
    await services.tasks.drain()

    resp = await client.delete(f"/api/documents/{document_id}", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404

    resp = await client.get(f"/api/documents/{document_id}", headers=AUTH_HEADERS)
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_wrong_user_list_is_isolated(client: AsyncClient, services):
    await _upload(client)
    await services.tasks.drain()

    resp = await client.get("/api/documents", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 200
    assert resp.json() == []
    assert resp.headers["X-Total-Count"] == "0"


@pytest.mark.asyncio
async def test_purge_requires_admin(client: AsyncClient, services):
    document_id = await _upload(client)
    await services.tasks.drain()

    resp = await client.delete(f"/api/admin/documents/{document_id}", headers=AUTH_HEADERS)
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"
