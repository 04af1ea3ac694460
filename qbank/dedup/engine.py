"""Similarity-keyed merge-or-insert decision for enriched questions.

For each enriched question and its unit-length embedding:

  nearest = closest stored article by inner-product distance
  if nearest exists and nearest.distance < threshold:   MERGE
      append the question to nearest.ext (embedding and fields untouched)
  else:                                                   INSERT
      new article from the question, embedding = vector, ext = []

The threshold is a negative distance (default -0.95, i.e. cosine similarity
above 0.95).  Semantically identical questions collapse into one article while
every phrasing is kept in ext for provenance.

The lookup and the write are separate statements.  Two workers inserting
near-duplicates at the same moment can both miss each other and create two
articles; that narrow race is accepted.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Sequence

from qbank.dedup.repository import ArticleRepository
from qbank.enrich.models import EnrichedQuestion
from qbank.errors import DedupError, StoreError

logger = logging.getLogger(__name__)


class DedupOutcome(str, enum.Enum):
    INSERTED = "inserted"
    MERGED = "merged"


class DedupEngine:
    """Applies the merge-or-insert rule against an ArticleRepository.

    Args:
        repository: Article storage.
        threshold:  Default merge threshold (inner-product distance).
    """

    def __init__(self, repository: ArticleRepository, threshold: float | None = None) -> None:
        if threshold is None:
            from qbank.config import settings  # noqa: PLC0415

            threshold = settings.dedup_threshold
        self._repository = repository
        self.threshold = threshold

    async def process(
        self,
        question: EnrichedQuestion,
        vector: Sequence[float],
        threshold: float | None = None,
    ) -> DedupOutcome:
        """Merge *question* into its nearest article or insert it as a new one.

        Raises:
            DedupError: If the lookup or the write fails.
        """
        if threshold is None:
            threshold = self.threshold

        try:
            nearest = await self._repository.find_closest(vector)
        except StoreError as exc:
            raise DedupError(f"nearest-article lookup failed: {exc}") from exc

        if nearest is not None and nearest.distance < threshold:
            logger.info(
                "Duplicate found, merging into article %d (distance=%.4f)",
                nearest.article_id,
                nearest.distance,
            )
            try:
                await self._repository.append_ext(nearest.article_id, question)
            except StoreError as exc:
                raise DedupError(
                    f"merging into article {nearest.article_id} failed: {exc}"
                ) from exc
            return DedupOutcome.MERGED

        if nearest is None:
            logger.info("No articles stored yet, inserting")
        else:
            logger.info(
                "New article (nearest=%d, distance=%.4f, threshold=%.4f)",
                nearest.article_id,
                nearest.distance,
                threshold,
            )
        try:
            article_id = await self._repository.insert(question, vector)
        except StoreError as exc:
            raise DedupError(f"inserting new article failed: {exc}") from exc
        logger.debug("Inserted article %d", article_id)
        return DedupOutcome.INSERTED
