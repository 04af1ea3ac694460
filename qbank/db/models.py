"""SQLAlchemy ORM models for qbank.

Tables:
- processing_queue : durable work queue (one row per submitted Task)
- articles         : deduplicated knowledge entries with pgvector embeddings

Queue status is a closed state machine (see QueueStatus).  The three partial
indexes on processing_queue back the three scans the workers run: oldest
ready, failed ordered for retry, and processing ordered for stuck detection.

The queue table only uses portable column types, so it can also be created on
SQLite (the test suite does this).  The articles table needs PostgreSQL with
the pgvector extension.
"""

from __future__ import annotations

import datetime
import enum

import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from qbank.config import settings
from qbank.errors import InvalidTransitionError


def utcnow() -> datetime.datetime:
    """Timezone-aware current UTC time; every queue timestamp comes from here."""
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Queue status state machine
# ---------------------------------------------------------------------------


class QueueStatus(str, enum.Enum):
    """Lifecycle of a queue entry.

    ready -> processing            claimed by a normal poller
    processing -> completed|failed finished by the claiming worker
    processing -> ready            reverted by the stuck-task reclaimer
    failed -> processing           re-claimed by the retry lane
    completed                      terminal
    """

    READY = "ready"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, target: QueueStatus) -> bool:
        return target in _TRANSITIONS[self]

    def ensure_transition(self, target: QueueStatus) -> None:
        """Raise InvalidTransitionError unless self -> target is legal."""
        if not self.can_transition_to(target):
            raise InvalidTransitionError(
                f"Queue entry cannot move from {self.value!r} to {target.value!r}"
            )


_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.READY: frozenset({QueueStatus.PROCESSING}),
    QueueStatus.PROCESSING: frozenset(
        {QueueStatus.COMPLETED, QueueStatus.FAILED, QueueStatus.READY}
    ),
    QueueStatus.FAILED: frozenset({QueueStatus.PROCESSING}),
    QueueStatus.COMPLETED: frozenset(),
}


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# BIGSERIAL on PostgreSQL; SQLite only autoincrements a plain INTEGER PRIMARY KEY
_BigIntId = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


# ---------------------------------------------------------------------------
# processing_queue
# ---------------------------------------------------------------------------


class QueueEntry(Base):
    """Persisted wrapper around a serialized Task."""

    __tablename__ = "processing_queue"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    task_type: Mapped[str] = mapped_column(sa.Text, nullable=False)
    # Written once by enqueue(); never updated afterwards
    payload: Mapped[dict] = mapped_column(
        sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
        nullable=False,
    )
    status: Mapped[QueueStatus] = mapped_column(
        sa.Enum(
            QueueStatus,
            name="queue_status",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=QueueStatus.READY,
        server_default=QueueStatus.READY.value,
    )
    retries: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    last_error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        sa.Index(
            "ix_processing_queue_ready",
            "created_at",
            postgresql_where=sa.text("status = 'ready'"),
        ),
        sa.Index(
            "ix_processing_queue_failed",
            "updated_at",
            "retries",
            postgresql_where=sa.text("status = 'failed'"),
        ),
        sa.Index(
            "ix_processing_queue_processing",
            "updated_at",
            postgresql_where=sa.text("status = 'processing'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<QueueEntry id={self.id} type={self.task_type} "
            f"status={self.status.value} retries={self.retries}>"
        )


# ---------------------------------------------------------------------------
# articles
# ---------------------------------------------------------------------------


class Article(Base):
    """Deduplicated knowledge entry.

    ``embedding`` is written once at insert and never recomputed.  ``ext`` is
    an append-only JSON array of EnrichedQuestion snapshots that were merged
    into this article as near-duplicates.
    """

    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    original_question: Mapped[str] = mapped_column(sa.Text, nullable=False)
    detailed_question: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    concise_answer: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(
        postgresql.ARRAY(sa.Text), nullable=False, server_default="{}"
    )
    embedding = mapped_column(Vector(settings.embedding_dimensions), nullable=False)
    ext: Mapped[list[dict]] = mapped_column(
        postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )

    __table_args__ = (
        sa.Index("ix_articles_tags_gin", "tags", postgresql_using="gin"),
        # vector_ip_ops: vectors are unit length, queries use inner product (<#>)
        sa.Index(
            "ix_articles_embedding_hnsw_ip",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_ip_ops"},
        ),
    )

    def __repr__(self) -> str:
        return f"<Article id={self.id} question={self.original_question[:40]!r}>"
