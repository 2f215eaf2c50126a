"""
Visibility Planner - maps classified lines + unlock progress to revealed lines.

Bands (progress = unlock_level / total_gates):
- 0             : signatures only
- (0, 0.34)     : + control-flow structure
- [0.34, 0.67)  : + logic
- >= 0.67       : everything

Blank lines are always visible. Reveal is additive: a line shown at one level
stays shown at every higher level.
"""

import re
from typing import FrozenSet, Iterable, List, Sequence, Set

from codegate.engines.unlock.models import AnalyzedLine, LineImportance

STRUCTURE_BAND = 0.34
LOGIC_BAND = 0.67

REDACTION_GLYPH = "█"  # full block

_BAND_IMPORTANCE = {
    0: {LineImportance.SIGNATURE},
    1: {LineImportance.SIGNATURE, LineImportance.STRUCTURE},
    2: {LineImportance.SIGNATURE, LineImportance.STRUCTURE, LineImportance.LOGIC},
}

_NON_SPACE = re.compile(r"\S")


def _band(unlock_level: int, total_gates: int) -> int:
    """Band index 0-3; 3 means fully visible."""
    if total_gates <= 0 or unlock_level >= total_gates:
        return 3
    progress = max(unlock_level, 0) / total_gates
    if progress == 0:
        return 0
    if progress < STRUCTURE_BAND:
        return 1
    if progress < LOGIC_BAND:
        return 2
    return 3


def visible_indices(
    lines: Sequence[AnalyzedLine],
    unlock_level: int,
    total_gates: int,
) -> FrozenSet[int]:
    """Indices of lines the learner may currently see."""
    band = _band(unlock_level, total_gates)
    if band == 3:
        return frozenset(line.index for line in lines)

    allowed = _BAND_IMPORTANCE[band]
    return frozenset(
        line.index for line in lines
        if line.is_blank or line.importance in allowed
    )


def band_description(unlock_level: int, total_gates: int) -> str:
    """Short learner-facing description of what the current band reveals."""
    if total_gates <= 0 or unlock_level >= total_gates:
        return "Fully understood"
    return {
        0: "Grasp the function outline",
        1: "Understand the control flow",
        2: "Follow the processing flow",
        3: "Almost done",
    }[_band(unlock_level, total_gates)]


def redact_line(content: str) -> str:
    """Replace every non-whitespace character with the redaction glyph."""
    return _NON_SPACE.sub(REDACTION_GLYPH, content)


def render_visible_code(lines: Iterable[AnalyzedLine], visible: Set[int]) -> str:
    """Full text with hidden lines redacted, indentation preserved."""
    rendered: List[str] = []
    for line in lines:
        rendered.append(line.content if line.index in visible else redact_line(line.content))
    return "\n".join(rendered)
