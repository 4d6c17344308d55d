"""
Consensus Builder

Merges analyzer votes into one directional bias.

Scoring:
    bullish weight = sum of bullish vote confidences
    bearish weight = sum of bearish vote confidences
    A side wins when it carries >= 1.2x the other side's weight.
    Otherwise the result is neutral with confidence |diff| / total.

Agreement is the share of ALL votes (neutral ones included) that match
the overall direction.  Conflicts are reported, never dropped: low
agreement, a near-balanced book of votes, and anything the sources flag
themselves (e.g. a structure break).
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional, Sequence

from .config import ConsensusConfig
from .types import ConsensusResult, Direction, Vote

logger = logging.getLogger(__name__)


def _vote_key(vote: Vote):
    return (vote.source, vote.direction.value, vote.confidence, vote.reason)


class ConsensusBuilder:
    """Weighted directional vote counting."""

    def __init__(self, config: Optional[ConsensusConfig] = None):
        self.cfg = config or ConsensusConfig()

    def build(self, votes: Iterable[Vote], extra_conflicts: Sequence[str] = ()) -> ConsensusResult:
        # Canonical order so identical vote multisets give identical floats
        ordered = tuple(sorted(votes, key=_vote_key))

        bullish = math.fsum(v.confidence for v in ordered if v.direction is Direction.BULLISH)
        bearish = math.fsum(v.confidence for v in ordered if v.direction is Direction.BEARISH)
        total = bullish + bearish
        ratio = self.cfg.dominance_ratio

        if bullish > 0 and bullish >= bearish * ratio:
            direction = Direction.BULLISH
            confidence = bullish / total
        elif bearish > 0 and bearish >= bullish * ratio:
            direction = Direction.BEARISH
            confidence = bearish / total
        else:
            direction = Direction.NEUTRAL
            confidence = abs(bullish - bearish) / total if total > 0 else 0.0

        matching = sum(1 for v in ordered if v.direction is direction)
        agreement = matching / len(ordered) if ordered else 0.0

        conflicts = []
        if agreement * 100.0 < self.cfg.agreement_threshold:
            conflicts.append(
                f"Mixed signals across methodologies (agreement {agreement * 100.0:.0f}%)"
            )
        if bullish > 0 and bearish > 0 and abs(bullish - bearish) / total < self.cfg.balance_threshold:
            conflicts.append("Balanced bullish/bearish signals")
        for extra in extra_conflicts:
            if extra and extra not in conflicts:
                conflicts.append(extra)

        result = ConsensusResult(
            overall_direction=direction,
            confidence=round(confidence * 100.0, 2),
            agreement_score=round(agreement * 100.0, 2),
            conflicting_signals=tuple(conflicts),
            bullish_weight=round(bullish, 6),
            bearish_weight=round(bearish, 6),
            votes=ordered,
        )

        logger.debug(
            "Consensus %s conf=%.2f agree=%.2f (bull=%.3f bear=%.3f, %d votes, %d conflicts)",
            direction.value, result.confidence, result.agreement_score,
            bullish, bearish, len(ordered), len(conflicts),
        )
        return result
