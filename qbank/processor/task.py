"""Task payload model and the submission entry point.

A Task is what callers submit; it is serialized as the JSON payload of a queue
entry and never changes afterwards.  ``submit`` is the whole submission
interface: it fills defaults, serializes, and enqueues.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from qbank.errors import PayloadValidationError
from qbank.queue.store import QueueStore

logger = logging.getLogger(__name__)

ENRICH_QUESTIONS = "enrich_questions"


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Task(BaseModel):
    """A batch of raw question text plus provenance metadata."""

    model_config = ConfigDict(frozen=True)

    raw_questions: str
    task_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime.datetime = Field(default_factory=_now)
    source: str = "default"
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """JSON-compatible dict stored in processing_queue.payload."""
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, payload: Any) -> Task:
        """Rebuild a Task from a stored payload.

        Raises:
            PayloadValidationError: If the payload is not a valid Task.
        """
        try:
            if isinstance(payload, (str, bytes)):
                return cls.model_validate_json(payload)
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise PayloadValidationError(f"invalid task payload: {exc}") from exc


async def submit(
    store: QueueStore,
    raw_questions: str,
    source: str | None = None,
    metadata: dict[str, Any] | None = None,
    task_type: str = ENRICH_QUESTIONS,
) -> Task:
    """Queue a batch of raw questions for enrichment.

    Empty *source* falls back to "default" and missing *metadata* to an empty
    map, the same defaults a Task gets on its own.

    Returns:
        The submitted Task; ``task.task_id`` identifies it.
    """
    task = Task(
        raw_questions=raw_questions,
        source=source or "default",
        metadata=metadata or {},
    )
    entry_id = await store.enqueue(task_type, task.to_payload())
    logger.info(
        "Submitted task %s (entry id=%d, source=%s)", task.task_id, entry_id, task.source
    )
    return task
