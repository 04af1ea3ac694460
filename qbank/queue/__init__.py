"""Durable processing queue backed by the processing_queue table.

Entries move ready -> processing -> completed | failed; failed entries are
retried with exponential backoff until max_retries is reached.
"""
