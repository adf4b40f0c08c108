"""Policy constants and enumerations for the mastery engine.

The blend weights and strength/weakness thresholds are product policy.
Change them only with product sign-off.
"""

from enum import Enum
from typing import Any, Mapping

# Skill mastery blend: prior history vs. the observed percentage of one attempt
MASTERY_PRIOR_WEIGHT = 0.6
MASTERY_OBSERVED_WEIGHT = 0.4

MASTERY_MIN = 0
MASTERY_MAX = 100

# Concept accuracy thresholds (whole percent)
STRENGTH_THRESHOLD_PCT = 75
WEAKNESS_THRESHOLD_PCT = 50

# Floor for recorded time per response (seconds)
MIN_TIME_SPENT_SECONDS = 1

DEFAULT_QUESTION_WEIGHT = 1.0
DEFAULT_QUESTION_DIFFICULTY = 3
DEFAULT_CONCEPT_LABEL = "Concept focus"

MASTERY_EVIDENCE_SOURCE = "diagnostic_assessment"


class AssessmentPurpose(str, Enum):
    """Purpose of an assessment definition, resolved once from its metadata bag."""

    DIAGNOSTIC = "diagnostic"
    BASELINE = "baseline"
    UNSPECIFIED = "unspecified"

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, Any] | None) -> "AssessmentPurpose":
        """
        Resolve the purpose tag.

        Diagnostic wins when ``purpose`` mentions "diagnostic" or the
        ``diagnostic`` / ``is_adaptive`` flags are literally ``True``.
        Baseline when ``purpose`` mentions "baseline".
        """
        meta = metadata if isinstance(metadata, Mapping) else {}
        raw_purpose = meta.get("purpose")
        purpose = raw_purpose.lower() if isinstance(raw_purpose, str) else ""

        if "diagnostic" in purpose or meta.get("diagnostic") is True or meta.get("is_adaptive") is True:
            return cls.DIAGNOSTIC
        if "baseline" in purpose:
            return cls.BASELINE
        return cls.UNSPECIFIED
