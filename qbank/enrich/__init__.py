"""LLM enrichment: raw question text in, structured EnrichedQuestion items out."""
