"""Initial schema — pgvector extension, processing queue, articles.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates:
- processing_queue : durable task queue (status stored as text, checked by a constraint)
- articles         : deduplicated questions with embeddings and merged duplicates in ext

Indexes created at table-creation time to avoid locking large tables later:
- ix_processing_queue_ready       : partial, oldest ready entry first
- ix_processing_queue_failed      : partial, retry lane scan (updated_at, retries)
- ix_processing_queue_processing  : partial, stuck-task detection
- ix_articles_tags_gin            : tag containment filter
- ix_articles_embedding_hnsw_ip   : HNSW nearest neighbour, inner product

Design notes:
- The embedding width follows QBANK_EMBEDDING_DIMENSIONS at migration time;
  changing the model later needs a new migration and a re-embed.
- vector_ip_ops because every stored vector is unit length and dedup orders
  by the <#> operator (negative inner product).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from qbank.config import settings

# revision identifiers used by Alembic
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. pgvector extension (idempotent)
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # 2. processing_queue
    op.create_table(
        "processing_queue",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("task_type", sa.Text, nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ready"),
        sa.Column("retries", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('ready', 'processing', 'completed', 'failed')",
            name="ck_processing_queue_status",
        ),
        sa.CheckConstraint("retries >= 0", name="ck_processing_queue_retries"),
    )

    op.create_index(
        "ix_processing_queue_ready",
        "processing_queue",
        ["created_at"],
        postgresql_where=sa.text("status = 'ready'"),
    )
    op.create_index(
        "ix_processing_queue_failed",
        "processing_queue",
        ["updated_at", "retries"],
        postgresql_where=sa.text("status = 'failed'"),
    )
    op.create_index(
        "ix_processing_queue_processing",
        "processing_queue",
        ["updated_at"],
        postgresql_where=sa.text("status = 'processing'"),
    )

    # 3. articles
    op.create_table(
        "articles",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("original_question", sa.Text, nullable=False),
        sa.Column("detailed_question", sa.Text, nullable=True),
        sa.Column("concise_answer", sa.Text, nullable=True),
        sa.Column(
            "tags",
            postgresql.ARRAY(sa.Text),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "ext",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    # vector(N) DDL needs the extension loaded above
    op.execute(
        f"ALTER TABLE articles ADD COLUMN embedding vector({settings.embedding_dimensions}) NOT NULL"
    )

    op.create_index(
        "ix_articles_tags_gin",
        "articles",
        ["tags"],
        postgresql_using="gin",
    )
    # m=16, ef_construction=64 are pgvector's recommended defaults
    op.execute(
        """
        CREATE INDEX ix_articles_embedding_hnsw_ip
        ON articles
        USING hnsw (embedding vector_ip_ops)
        WITH (m = 16, ef_construction = 64)
        """
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_articles_embedding_hnsw_ip")
    op.drop_index("ix_articles_tags_gin", table_name="articles")
    op.drop_table("articles")

    op.drop_index("ix_processing_queue_processing", table_name="processing_queue")
    op.drop_index("ix_processing_queue_failed", table_name="processing_queue")
    op.drop_index("ix_processing_queue_ready", table_name="processing_queue")
    op.drop_table("processing_queue")
    # The vector extension is left installed; other schemas may use it
