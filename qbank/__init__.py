"""qbank — deduplicated question knowledge base.

Raw question batches are queued, enriched by an LLM, embedded, and merged into
a pgvector-backed article store where near-identical questions collapse into a
single article.
"""

__version__ = "0.1.0"
