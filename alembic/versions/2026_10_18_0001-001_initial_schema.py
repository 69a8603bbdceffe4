"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

All 5 tables as defined in folio/models/database_models.py:
documents, summaries, concepts, exercise_sets, mind_maps.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _artifact_columns():
    return [
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "document_id",
            sa.String(32),
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("owner_id", sa.String(255), nullable=False, index=True),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ── documents ─────────────────────────────────────────────────────────
    op.create_table(
        "documents",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("owner_id", sa.String(255), nullable=False, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("original_format", sa.String(20), nullable=False, index=True),
        sa.Column("storage_key", sa.String(512), nullable=True),
        sa.Column("source_url", sa.String(2048), nullable=True),
        sa.Column("extracted_text", sa.Text, nullable=False, server_default=""),
        sa.Column("restructured_text", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("processing_error", sa.Text, nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── summaries ─────────────────────────────────────────────────────────
    op.create_table(
        "summaries",
        *_artifact_columns(),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("language", sa.String(10), nullable=True),
        sa.Column("length", sa.String(20), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("document_id", "type", name="uq_summaries_document_type"),
    )

    # ── concepts ──────────────────────────────────────────────────────────
    op.create_table(
        "concepts",
        *_artifact_columns(),
        sa.Column("term", sa.String(200), nullable=False),
        sa.Column("definition", sa.Text, nullable=False),
        sa.Column("category", sa.String(20), nullable=False, server_default="concept"),
        sa.Column("importance", sa.Integer, nullable=False, server_default="3"),
        sa.Column("occurrences", sa.JSON, nullable=False),
        sa.Column("related_terms", sa.JSON, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("document_id", "term", name="uq_concepts_document_term"),
    )

    # ── exercise_sets ─────────────────────────────────────────────────────
    op.create_table(
        "exercise_sets",
        *_artifact_columns(),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("difficulty", sa.String(20), nullable=True),
        sa.Column("language", sa.String(10), nullable=True),
        sa.Column("exercises", sa.JSON, nullable=False),
        sa.Column("type_counts", sa.JSON, nullable=False),
    )

    # ── mind_maps ─────────────────────────────────────────────────────────
    op.create_table(
        "mind_maps",
        *_artifact_columns(),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("diagram_source", sa.Text, nullable=False),
        sa.Column("diagram_type", sa.String(30), nullable=True),
        sa.Column("is_valid", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("validation_errors", sa.JSON, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("mind_maps")
    op.drop_table("exercise_sets")
    op.drop_table("concepts")
    op.drop_table("summaries")
    op.drop_table("documents")
