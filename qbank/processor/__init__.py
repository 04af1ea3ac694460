"""Task submission, the per-entry pipeline and the polling worker pool."""
