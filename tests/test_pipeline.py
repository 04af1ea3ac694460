"""End-to-end tests for qbank.processor.pipeline.Pipeline.

Real QueueStore on SQLite, fake article storage, stub enrichment/embedding.
"""

import asyncio

import pytest

from qbank.db.models import QueueStatus
from qbank.dedup.engine import DedupEngine
from qbank.processor.pipeline import Pipeline
from qbank.processor.task import submit
from tests.fakes import StubEmbedder, StubEnricher, question


def _pipeline(store, articles, enricher, embedder) -> Pipeline:
    return Pipeline(store, enricher, embedder, DedupEngine(articles, threshold=-0.95))


def _submit_and_claim(store, text: str = "1. closures?\n2. monads?"):
    asyncio.run(submit(store, text, source="tests"))
    return asyncio.run(store.claim_ready())


class TestPipelineRun:
    def test_new_questions_are_inserted(self, store, articles) -> None:
        q1, q2 = question("closures?"), question("monads?")
        embedder = StubEmbedder({
            q1.embeddable_text(): [1.0, 0.0, 0.0],
            q2.embeddable_text(): [0.0, 2.0, 0.0],
        })
        enricher = StubEnricher([q1, q2])
        entry = _submit_and_claim(store)

        result = asyncio.run(_pipeline(store, articles, enricher, embedder).run(entry))

        assert result.ok
        assert (result.inserted, result.merged) == (2, 0)
        assert asyncio.run(store.get(entry.id)).status is QueueStatus.COMPLETED
        assert enricher.calls == ["1. closures?\n2. monads?"]
        # stored vectors are unit length
        assert articles.articles[2].embedding == [0.0, 1.0, 0.0]

    def test_duplicate_within_batch_is_merged(self, store, articles) -> None:
        q1, q2 = question("What is a closure?"), question("Explain closures")
        embedder = StubEmbedder({
            q1.embeddable_text(): [1.0, 0.0, 0.0],
            q2.embeddable_text(): [3.0, 0.1, 0.0],
        })
        entry = _submit_and_claim(store)

        result = asyncio.run(_pipeline(store, articles, StubEnricher([q1, q2]), embedder).run(entry))

        assert (result.inserted, result.merged) == (1, 1)
        assert len(articles.articles) == 1
        assert articles.articles[1].ext[0]["original_question"] == "Explain closures"

    def test_question_matching_stored_article_is_merged(self, store, articles) -> None:
        articles.add(question("What is a closure?"), [0.0, 1.0, 0.0])
        q = question("closures?")
        entry = _submit_and_claim(store)

        result = asyncio.run(
            _pipeline(store, articles, StubEnricher([q]), StubEmbedder(default=[0.0, 1.0, 0.0])).run(entry)
        )

        assert result.ok
        assert (result.inserted, result.merged) == (0, 1)
        assert len(articles.articles) == 1
        assert len(articles.articles[1].ext) == 1

    def test_empty_enrichment_completes(self, store, articles) -> None:
        entry = _submit_and_claim(store)
        result = asyncio.run(_pipeline(store, articles, StubEnricher([]), StubEmbedder()).run(entry))
        assert result.ok
        assert (result.inserted, result.merged) == (0, 0)

    def test_enrichment_failure_marks_failed(self, store, articles) -> None:
        entry = _submit_and_claim(store)
        enricher = StubEnricher(error="LLM call timed out after 120.0s")

        result = asyncio.run(_pipeline(store, articles, enricher, StubEmbedder()).run(entry))

        assert result.status is QueueStatus.FAILED
        stored = asyncio.run(store.get(entry.id))
        assert stored.status is QueueStatus.FAILED
        assert stored.retries == 1
        assert "timed out" in stored.last_error
        assert articles.articles == {}

    def test_embedding_count_mismatch_marks_failed(self, store, articles) -> None:
        entry = _submit_and_claim(store)
        enricher = StubEnricher([question("a"), question("b")])

        result = asyncio.run(
            _pipeline(store, articles, enricher, StubEmbedder(drop_last=True)).run(entry)
        )

        assert result.status is QueueStatus.FAILED
        stored = asyncio.run(store.get(entry.id))
        assert stored.retries == 1
        assert "count" in stored.last_error
        assert articles.articles == {}

    def test_invalid_payload_marks_failed(self, store, articles) -> None:
        asyncio.run(store.enqueue("enrich_questions", {"source": "no raw_questions"}))
        entry = asyncio.run(store.claim_ready())
        enricher = StubEnricher([question("a")])

        result = asyncio.run(_pipeline(store, articles, enricher, StubEmbedder()).run(entry))

        assert result.status is QueueStatus.FAILED
        assert "invalid task payload" in asyncio.run(store.get(entry.id)).last_error
        assert enricher.calls == []

    def test_dedup_failure_keeps_earlier_writes(self, store, articles) -> None:
        q1, q2 = question("a"), question("b")
        embedder = StubEmbedder({
            q1.embeddable_text(): [1.0, 0.0, 0.0],
            q2.embeddable_text(): [0.0, 1.0, 0.0],
        })

        inserted = []
        original_insert = articles.insert

        async def insert_once(q, vector):
            if inserted:
                articles.fail_insert = True
            inserted.append(q)
            return await original_insert(q, vector)

        articles.insert = insert_once
        entry = _submit_and_claim(store)

        result = asyncio.run(_pipeline(store, articles, StubEnricher([q1, q2]), embedder).run(entry))

        assert result.status is QueueStatus.FAILED
        assert result.inserted == 1
        assert len(articles.articles) == 1
        assert asyncio.run(store.get(entry.id)).status is QueueStatus.FAILED

    def test_retried_entry_completes(self, store, articles, age_entry) -> None:
        entry = _submit_and_claim(store)
        asyncio.run(
            _pipeline(store, articles, StubEnricher(error="503"), StubEmbedder()).run(entry)
        )
        age_entry(entry.id, 30)
        retry = asyncio.run(store.claim_failed_for_retry(5))

        result = asyncio.run(
            _pipeline(store, articles, StubEnricher([question("a")]), StubEmbedder()).run(retry)
        )

        assert result.ok
        stored = asyncio.run(store.get(entry.id))
        assert stored.status is QueueStatus.COMPLETED
        assert stored.retries == 1

    def test_unexpected_errors_propagate(self, store, articles) -> None:
        class BrokenEnricher(StubEnricher):
            async def enrich(self, raw_text):
                raise RuntimeError("bug")

        entry = _submit_and_claim(store)
        with pytest.raises(RuntimeError):
            asyncio.run(_pipeline(store, articles, BrokenEnricher(), StubEmbedder()).run(entry))
        assert asyncio.run(store.get(entry.id)).status is QueueStatus.PROCESSING

    def test_reclaimed_entry_is_not_reported_complete(self, store, articles, age_entry) -> None:
        entry = _submit_and_claim(store)
        age_entry(entry.id, 700)
        assert asyncio.run(store.reclaim_stuck(600)) == 1

        result = asyncio.run(
            _pipeline(store, articles, StubEnricher([question("a")]), StubEmbedder()).run(entry)
        )

        assert not result.ok
        assert "reclaimed" in result.error
        assert result.inserted == 1
        assert asyncio.run(store.get(entry.id)).status is QueueStatus.READY
