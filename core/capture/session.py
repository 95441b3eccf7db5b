"""Multi-pose enrollment bookkeeping."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .types import POSE_REQUIREMENTS, CaptureResult, PoseRequirement


@dataclass
class EnrollmentSession:
    """Ordered captures for one enrollment; complete once ``required`` poses are in."""

    required: int = 3
    captures: List[CaptureResult] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.required = max(1, int(self.required))

    @property
    def pose_index(self) -> int:
        return len(self.captures)

    @property
    def current_pose(self) -> PoseRequirement:
        # Counts beyond the named poses reuse the last requirement.
        index = min(self.pose_index, len(POSE_REQUIREMENTS) - 1)
        return POSE_REQUIREMENTS[index]

    def add(self, result: CaptureResult) -> None:
        if self.is_complete():
            raise ValueError("Enrollment session already complete")
        self.captures.append(result)

    def is_complete(self) -> bool:
        return len(self.captures) >= self.required

    def best(self) -> Optional[CaptureResult]:
        """Highest quality capture; the earliest wins a tie."""
        if not self.captures:
            return None
        return max(self.captures, key=lambda c: c.quality.score)

    def reset(self) -> None:
        self.captures.clear()
