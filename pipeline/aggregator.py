"""
Reduces per-block classifier scores to a single verdict.
"""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

# A block counts as fake when its score is strictly above this
BLOCK_FAKE_SCORE = 0.5


class Verdict(str, Enum):
    FAKE = "FAKE"
    REAL = "REAL"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class DetectionResult:
    label: Verdict
    max_score: float
    fake_ratio: float
    processing_time_seconds: float
    is_fake: bool
    block_count: int = 0

    @property
    def fake_ratio_percentage(self):
        return f"{self.fake_ratio * 100:.2f}%"

    @classmethod
    def unknown(cls, elapsed=0.0):
        """Too few face crops to form a block: no score, no ratio."""
        return cls(
            label=Verdict.UNKNOWN,
            max_score=0.0,
            fake_ratio=0.0,
            processing_time_seconds=elapsed,
            is_fake=False,
            block_count=0,
        )

    def to_dict(self):
        return {
            "result": self.label.value,
            "score": round(self.max_score, 4),
            "fake_ratio": self.fake_ratio,
            "fake_ratio_percentage": self.fake_ratio_percentage,
            "processing_time": round(self.processing_time_seconds, 3),
            "fake": self.is_fake,
            "block_count": self.block_count,
        }


def aggregate(scores, threshold, elapsed):
    """
    Aggregate InferenceScores into a DetectionResult.

    fake_ratio is the share of blocks scoring above 0.5; the verdict is FAKE
    when fake_ratio >= threshold. max_score is the highest block score.
    """
    if not scores:
        return DetectionResult.unknown(elapsed)

    probabilities = [s.probability for s in scores]
    n = len(probabilities)
    fake_blocks = sum(1 for p in probabilities if p > BLOCK_FAKE_SCORE)
    fake_ratio = fake_blocks / n
    is_fake = fake_ratio >= threshold

    result = DetectionResult(
        label=Verdict.FAKE if is_fake else Verdict.REAL,
        max_score=max(probabilities),
        fake_ratio=fake_ratio,
        processing_time_seconds=elapsed,
        is_fake=is_fake,
        block_count=n,
    )
    logger.info(
        "Analysis complete: %d blocks, %s fake, result: %s (%.2fs)",
        n, result.fake_ratio_percentage, result.label.value, elapsed,
    )
    return result
