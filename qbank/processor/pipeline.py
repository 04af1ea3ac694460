"""Per-entry processing: deserialize -> enrich -> embed -> dedup -> finalize.

One claimed queue entry is run start to finish by ``Pipeline.run``.  Expected
failures are recorded on the entry with ``mark_failed``:

- the payload does not parse (retrying will not help, but it is still recorded
  as an ordinary failure)
- the enrichment or embedding call fails, or returns the wrong number of vectors
- a dedup write fails; items already merged or inserted stay that way

Anything else (a StoreError while finishing, a bug) propagates to the poller
and the entry is left ``processing`` for the stuck-task reclaimer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from qbank.db.models import QueueEntry, QueueStatus
from qbank.dedup.engine import DedupEngine, DedupOutcome
from qbank.embedding.embedder import EmbeddingProvider
from qbank.enrich.enricher import Enricher
from qbank.errors import (
    CollaboratorError,
    DedupError,
    EmbeddingError,
    PayloadValidationError,
    QBankError,
    StoreError,
)
from qbank.processor.task import Task
from qbank.queue.store import QueueStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    entry_id: int
    status: QueueStatus
    inserted: int = 0
    merged: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is QueueStatus.COMPLETED


class Pipeline:
    """Runs claimed queue entries through enrichment, embedding and dedup.

    Args:
        store:     Queue store used to finalize entries.
        enricher:  Enrichment collaborator.
        embedder:  Embedding collaborator.
        dedup:     Merge-or-insert engine.
        threshold: Merge threshold override; None uses the engine default.
    """

    def __init__(
        self,
        store: QueueStore,
        enricher: Enricher,
        embedder: EmbeddingProvider,
        dedup: DedupEngine,
        threshold: float | None = None,
    ) -> None:
        self._store = store
        self._enricher = enricher
        self._embedder = embedder
        self._dedup = dedup
        self._threshold = threshold

    async def run(self, entry: QueueEntry) -> PipelineResult:
        result = PipelineResult(entry_id=entry.id, status=QueueStatus.PROCESSING)
        try:
            task = Task.from_payload(entry.payload)
            logger.info(
                "Processing entry id=%d task=%s (attempt %d)",
                entry.id,
                task.task_id,
                entry.retries + 1,
            )

            questions = await self._enricher.enrich(task.raw_questions)
            texts = [q.embeddable_text() for q in questions]
            vectors = await self._embedder.embed_batch(texts)
            if len(vectors) != len(texts):
                raise EmbeddingError(
                    f"embedding returned {len(vectors)} vectors for {len(texts)} texts"
                )

            for index, (question, vector) in enumerate(zip(questions, vectors)):
                try:
                    outcome = await self._dedup.process(question, vector, self._threshold)
                except DedupError:
                    logger.error(
                        "Dedup failed for entry id=%d at question %d of %d",
                        entry.id,
                        index + 1,
                        len(questions),
                    )
                    raise
                if outcome is DedupOutcome.MERGED:
                    result.merged += 1
                else:
                    result.inserted += 1

        except (PayloadValidationError, CollaboratorError, DedupError) as exc:
            await self._fail(entry, exc)
            result.status = QueueStatus.FAILED
            result.error = str(exc)
            return result

        if not await self._store.mark_completed(entry):
            # Reclaimed mid-run; the entry will be processed again
            result.error = "entry was reclaimed before it could complete"
            logger.warning(
                "Entry id=%d finished (%d inserted, %d merged) but was no longer processing",
                entry.id,
                result.inserted,
                result.merged,
            )
            return result

        result.status = QueueStatus.COMPLETED
        logger.info(
            "Completed entry id=%d: %d inserted, %d merged",
            entry.id,
            result.inserted,
            result.merged,
        )
        return result

    async def _fail(self, entry: QueueEntry, exc: QBankError) -> None:
        logger.warning("Entry id=%d failed: %s: %s", entry.id, type(exc).__name__, exc)
        try:
            await self._store.mark_failed(entry, exc)
        except StoreError:
            # Nothing else to do; the reclaimer will pick the entry up again
            logger.exception("Could not record failure for entry id=%d", entry.id)
