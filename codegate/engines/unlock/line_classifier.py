"""
Line Importance Classifier - tags each source line by structural importance.

A single-pass, pattern-driven heuristic (not a parser). Precedence is
signature > structure > logic > detail. Misclassification is acceptable;
raising is not.
"""

import re
from collections import OrderedDict
from typing import List, Tuple

from codegate.engines.unlock.models import AnalyzedLine, Artifact, LineImportance

# ── Signature: declarations, imports/exports ────────────────────────────

SIGNATURE_PATTERNS: List[re.Pattern] = [
    re.compile(r"^(export|import)\b"),
    re.compile(r"^from\s+[\w.]+\s+import\b"),
    re.compile(r"^(async\s+)?(function|def)\b"),
    re.compile(r"^(abstract\s+)?class\b"),
    re.compile(r"^(interface|struct|enum|trait|impl|package|module|namespace)\b"),
    re.compile(r"^type\s+\w+\s*="),
    re.compile(r"^(pub\s+)?fn\s+\w+"),
]

# Module-level bindings count as declarations only when unindented
TOP_LEVEL_BINDING = re.compile(r"^(const|let|var)\s+\w+\s*=")

FINAL_CLOSING_LINE = re.compile(r"^[}\])]+;?$")

# ── Structure: control flow, closing braces ─────────────────────────────

STRUCTURE_PATTERNS: List[re.Pattern] = [
    re.compile(
        r"^(if|else|elif|for|while|do|switch|case|default|match|try|catch|except|"
        r"finally|with|return|throw|raise|break|continue|yield)(?=[\s({:;]|$)"
    ),
    re.compile(r"^\}\s*(else|catch|finally)\b"),
    re.compile(r"^[}\])][}\])\s;,]*$"),
]

# ── Logic: assignments, calls, awaits ───────────────────────────────────

LOGIC_PATTERNS: List[re.Pattern] = [
    re.compile(r"^(const|let|var)\s+\w+\s*="),
    re.compile(r"^[\w.\[\]'\"]+\s*(\+|-|\*|/|%|\|\||&&|\?\?|\|)?=(?!=)"),
    re.compile(r"\w+\s*\(.*\)"),
    re.compile(r"\bawait\s+"),
]


def _classify_line(raw: str, index: int, last_index: int) -> LineImportance:
    trimmed = raw.strip()
    indented = raw[:1].isspace()

    if any(p.match(trimmed) for p in SIGNATURE_PATTERNS):
        return LineImportance.SIGNATURE
    if not indented and TOP_LEVEL_BINDING.match(trimmed):
        return LineImportance.SIGNATURE
    if index == last_index and FINAL_CLOSING_LINE.match(trimmed):
        return LineImportance.SIGNATURE

    if any(p.match(trimmed) for p in STRUCTURE_PATTERNS):
        return LineImportance.STRUCTURE

    if trimmed and any(p.search(trimmed) for p in LOGIC_PATTERNS):
        return LineImportance.LOGIC

    return LineImportance.DETAIL


def classify(content: str) -> List[AnalyzedLine]:
    """Classify every line of content. Blank lines are tagged detail."""
    lines = content.split("\n")
    last_index = len(lines) - 1
    return [
        AnalyzedLine(index=i, content=line, importance=_classify_line(line, i, last_index))
        for i, line in enumerate(lines)
    ]


class ClassificationCache:
    """Memoizes classifications per artifact version (id + content hash)."""

    def __init__(self, max_entries: int = 256):
        self.max_entries = max_entries
        self._entries: "OrderedDict[Tuple[str, str], Tuple[AnalyzedLine, ...]]" = OrderedDict()

    def get(self, artifact: Artifact) -> List[AnalyzedLine]:
        key = (artifact.id, artifact.content_hash)
        cached = self._entries.get(key)
        if cached is not None:
            self._entries.move_to_end(key)
            return list(cached)

        lines = tuple(classify(artifact.content))
        self._entries[key] = lines
        if len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return list(lines)

    def __len__(self) -> int:
        return len(self._entries)
