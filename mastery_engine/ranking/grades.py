"""Grade band ordinals used for grade-proximity scoring."""

import re

_NUMBER_RE = re.compile(r"\d+")
_HIGH_SCHOOL_RE = re.compile(r"hs|high")

PRE_K_ORDINAL = -1.0
KINDERGARTEN_ORDINAL = 0.0
HIGH_SCHOOL_ORDINAL = 10.0
UNKNOWN_GRADE_ORDINAL = 0.0


def grade_order(grade_band: str | None) -> float:
    """
    Map a grade band to a numeric ordinal.

    - "Pre-K"/"prek" -> -1, "K"/"kindergarten" -> 0
    - Bands with digits -> mean of the numbers ("6-8" -> 7)
    - Unnumbered high-school bands ("HS", "High School") -> 10
    - Anything else -> 0
    """
    trimmed = (grade_band or "").strip().lower()
    if trimmed in ("pre-k", "prek"):
        return PRE_K_ORDINAL
    if trimmed in ("k", "kindergarten"):
        return KINDERGARTEN_ORDINAL

    numbers = [int(value) for value in _NUMBER_RE.findall(trimmed)]
    if numbers:
        return sum(numbers) / len(numbers)

    if _HIGH_SCHOOL_RE.search(trimmed):
        return HIGH_SCHOOL_ORDINAL
    return UNKNOWN_GRADE_ORDINAL
