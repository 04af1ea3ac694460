"""Tests for the QueueStatus state machine."""

import pytest

from qbank.db.models import QueueStatus
from qbank.errors import InvalidTransitionError

LEGAL = {
    (QueueStatus.READY, QueueStatus.PROCESSING),
    (QueueStatus.PROCESSING, QueueStatus.COMPLETED),
    (QueueStatus.PROCESSING, QueueStatus.FAILED),
    (QueueStatus.PROCESSING, QueueStatus.READY),
    (QueueStatus.FAILED, QueueStatus.PROCESSING),
}


class TestQueueStatus:
    @pytest.mark.parametrize("source", list(QueueStatus))
    @pytest.mark.parametrize("target", list(QueueStatus))
    def test_transition_table(self, source, target) -> None:
        assert source.can_transition_to(target) == ((source, target) in LEGAL)

    def test_completed_is_terminal(self) -> None:
        for target in QueueStatus:
            with pytest.raises(InvalidTransitionError):
                QueueStatus.COMPLETED.ensure_transition(target)

    def test_failed_cannot_skip_processing(self) -> None:
        with pytest.raises(InvalidTransitionError, match="'failed' to 'completed'"):
            QueueStatus.FAILED.ensure_transition(QueueStatus.COMPLETED)

    def test_values_are_stored_strings(self) -> None:
        assert [s.value for s in QueueStatus] == ["ready", "processing", "completed", "failed"]
