"""Three-strike decision for a single slot.

The state machine owns the counters; this only turns them into a decision.
"""

from enum import Enum


class Decision(str, Enum):
    ACCEPT = "accept"
    RETRY = "retry"
    ESCALATE = "escalate"


def decide(attempt_count: int, threshold: int, validated: bool = False) -> Decision:
    """Decide what happens to a slot after its latest attempt.

    A validated value is always accepted. Otherwise the caller gets another
    try until ``attempt_count`` reaches ``threshold``.
    """
    if validated:
        return Decision.ACCEPT
    if attempt_count < threshold:
        return Decision.RETRY
    return Decision.ESCALATE
