"""Tests for the three-strike confirmation decision."""

import pytest

from receptionist.conversation.confirmation_policy import Decision, decide


class TestDecide:
    @pytest.mark.parametrize("attempts", [0, 1, 2])
    def test_retry_below_threshold(self, attempts):
        assert decide(attempts, 3) == Decision.RETRY

    @pytest.mark.parametrize("attempts", [3, 4, 10])
    def test_escalate_at_or_above_threshold(self, attempts):
        assert decide(attempts, 3) == Decision.ESCALATE

    def test_validated_always_accepted(self):
        assert decide(5, 3, validated=True) == Decision.ACCEPT

    def test_custom_threshold(self):
        assert decide(1, 1) == Decision.ESCALATE
        assert decide(4, 5) == Decision.RETRY
