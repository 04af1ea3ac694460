"""Enrichment output models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class EnrichedQuestion(BaseModel):
    """One question as rewritten by the enrichment model."""

    original_question: str
    detailed_question: str = ""
    concise_answer: str = ""
    tags: list[str] = Field(default_factory=list)

    def embeddable_text(self) -> str:
        """Text that gets embedded: the detailed question, a blank line, the answer."""
        return f"{self.detailed_question}\n\n{self.concise_answer}"


class EnrichedQuestionSet(BaseModel):
    """Top-level object the enrichment prompt asks the model to return."""

    questions: list[EnrichedQuestion]

    def embeddable_texts(self) -> list[str]:
        return [q.embeddable_text() for q in self.questions]
