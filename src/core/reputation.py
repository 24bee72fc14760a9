"""Reporter standing score maintenance.

The score is a bounded weighted mean: a long-lived reporter's history caps
out at 100 messages of weight, while a single new message always counts as
three. Brand-new reporters therefore move quickly and veterans barely move.
"""

from __future__ import annotations

import logging
import math

from core.identifiers import mask_identity
from core.ports import ReporterStorePort

LOGGER = logging.getLogger(__name__)

MIN_SCORE = 1.0
MAX_SCORE = 10.0
HISTORY_WEIGHT_CAP = 100
MESSAGE_WEIGHT = 3
MIN_DECAY = 0.1


def blend_ethical_score(current_score: float, total_messages: int, message_score: float) -> float:
    """Fold one message score into a reporter's standing score."""

    # An unknown history counts as one earlier message.
    total_messages = max(1, total_messages)
    weight = min(total_messages, HISTORY_WEIGHT_CAP)
    decay = max(MIN_DECAY, 1 / math.sqrt(total_messages + 1))
    history = weight * (1 - decay)
    blended = (current_score * history + message_score * MESSAGE_WEIGHT) / (history + MESSAGE_WEIGHT)
    return max(MIN_SCORE, min(MAX_SCORE, round(blended, 1)))


class ReputationTracker:
    """Sole writer of Reporter.ethical_score."""

    def __init__(self, reporters: ReporterStorePort) -> None:
        self._reporters = reporters

    def record_message_score(self, identity: str, message_score: float) -> float:
        """Blend a classifier score for the reporter's latest message and persist it."""

        reporter = self._reporters.get_reporter(identity)
        if reporter is None:
            reporter = self._reporters.register_message(identity)
        new_score = blend_ethical_score(reporter.ethical_score, reporter.total_messages, message_score)
        self._reporters.set_ethical_score(identity, new_score)
        LOGGER.info(
            "Ethical score for %s: %s -> %s (message=%s, total=%s)",
            mask_identity(identity),
            reporter.ethical_score,
            new_score,
            message_score,
            reporter.total_messages,
        )
        return new_score
