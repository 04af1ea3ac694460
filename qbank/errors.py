"""Exception hierarchy for qbank.

The pipeline decides what to do with a failure purely by its class:

- StoreError               propagates; no compensating action.
- PayloadValidationError   recorded with mark_failed (retrying cannot help,
                           but no separate permanent-failure state exists).
- CollaboratorError        recorded with mark_failed; retryable with backoff.
- DedupError               treated exactly like CollaboratorError.
"""

from __future__ import annotations


class QBankError(Exception):
    """Base class for all qbank errors."""


class StoreError(QBankError):
    """The durable store could not be reached or a transaction failed."""


class InvalidTransitionError(QBankError):
    """A queue entry was asked to move to a status it cannot reach."""


class PayloadValidationError(QBankError):
    """A queue payload could not be deserialized into a Task."""


class CollaboratorError(QBankError):
    """An external enrichment or embedding call failed."""


class EnrichmentError(CollaboratorError):
    """The enrichment model call failed or returned unusable output."""


class EmbeddingError(CollaboratorError):
    """The embedding call failed or returned the wrong number/shape of vectors."""


class DedupError(QBankError):
    """A store read or write failed while merging or inserting an article."""
