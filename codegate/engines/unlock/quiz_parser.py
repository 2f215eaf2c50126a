"""
Quiz parsing - turns oracle output into Quiz objects.

Priority:
1. Structured objects (mappings / Quiz instances)
2. Structured markers or JSON embedded in text: <!--QUIZ:{...}-->
3. Free-text recovery: "A) ...", "A. ...", "A: ...", "(A) ..." option lists
   with optional "Answer:" / "Explanation:" / "Hint:" tails
"""

import json
import re
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from codegate.engines.unlock.models import Quiz, QuizOption, QuizSource
from codegate.logging_config import get_logger

logger = get_logger(__name__)

QUIZ_MARKER_RE = re.compile(r"<!--QUIZ:([\s\S]*?)-->")

_LABELS = "[A-DＡ-Ｄ]"
_SEPARATORS = "[)）.:：]"

LINE_OPTION_RE = re.compile(rf"^[\s\-•*]*({_LABELS}){_SEPARATORS}\s*(.+)$", re.M)
PAREN_OPTION_RE = re.compile(rf"^[\s\-•*]*\(({_LABELS})\)\s*(.+)$", re.M)
INLINE_OPTION_RE = re.compile(rf"({_LABELS}){_SEPARATORS}\s*(.+?)(?=\s*{_LABELS}{_SEPARATORS}|$)", re.M)

ANSWER_RE = re.compile(r"(?:correct\s+answer|answer|correct|正解)\s*[:：]\s*\(?([A-DＡ-Ｄ])\b", re.I)
EXPLANATION_RE = re.compile(r"(?:explanation|解説)\s*[:：]\s*(.+)", re.I)
HINT_RE = re.compile(r"(?:hint|ヒント)\s*[:：]\s*(.+)", re.I)

QUESTION_SPLIT_PATTERNS = [
    re.compile(r"(?=^\s*(?:Q|Question)\s*[1-9][0-9]*[\s:：.．)])", re.I | re.M),
    re.compile(r"(?=(?:質問|問題|問)\s*[1-9０-９][0-9０-９]*[\s:：.．])"),
    re.compile(r"(?=【(?:質問|問題|問)\s*[1-9０-９][0-9０-９]*】)"),
]

DEFAULT_QUESTION = "Choose the best answer about this code."
MAX_INLINE_OPTION_CHARS = 200


def normalize_label(label: str) -> str:
    """Full-width A-D to ASCII, upper-cased."""
    return "".join(
        chr(ord(c) - 0xFEE0) if "Ａ" <= c <= "Ｄ" else c
        for c in label.strip()
    ).upper()


def remove_quiz_markers(text: str) -> str:
    """Strip <!--QUIZ:...--> markers from displayable text."""
    return QUIZ_MARKER_RE.sub("", text).strip()


# ── structured ─────────────────────────────────────────────────────────

def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] not in (None, ""):
            return data[key]
    return None


def _coerce_options(raw: Any) -> List[QuizOption]:
    options: List[QuizOption] = []
    if not isinstance(raw, list):
        return options
    for i, item in enumerate(raw):
        if isinstance(item, QuizOption):
            options.append(item)
        elif isinstance(item, Mapping):
            label = normalize_label(str(item.get("label") or "ABCD"[i % 4]))
            options.append(QuizOption(
                label=label,
                text=str(item.get("text", "")).strip(),
                explanation=item.get("explanation"),
            ))
        elif isinstance(item, str):
            options.append(QuizOption(label="ABCD"[i % 4], text=item.strip()))
    return options


def quiz_from_mapping(
    data: Mapping[str, Any],
    *,
    level: int = 0,
    source: QuizSource = QuizSource.ORACLE,
) -> Optional[Quiz]:
    """Build a Quiz from a camelCase or snake_case mapping; None when invalid."""
    options = _coerce_options(data.get("options"))
    correct = _first(data, "correct_label", "correctLabel", "answer", "correct")
    if isinstance(correct, int) and 0 <= correct < len(options):
        correct = options[correct].label
    fields: Dict[str, Any] = {
        "level": int(_first(data, "level") or level),
        "question": str(_first(data, "question", "text") or "").strip(),
        "options": options,
        "correct_label": normalize_label(str(correct or "")),
        "hint": _first(data, "hint"),
        "detailed_explanation": _first(data, "detailed_explanation", "detailedExplanation", "explanation"),
        "code_snippet": _first(data, "code_snippet", "codeSnippet"),
        "code_language": _first(data, "code_language", "codeLanguage"),
        "source": source,
    }
    quiz_id = _first(data, "id")
    if quiz_id:
        fields["id"] = str(quiz_id)
    try:
        return Quiz(**fields)
    except (ValidationError, ValueError, TypeError) as exc:
        logger.debug("Discarding invalid quiz payload: %s", exc)
        return None


def parse_structured_quizzes(text: str) -> List[Dict[str, Any]]:
    """Structured quiz payloads embedded in text (markers first, then bare JSON)."""
    payloads: List[Dict[str, Any]] = []
    for match in QUIZ_MARKER_RE.finditer(text):
        try:
            parsed = json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            continue
        payloads.extend(_flatten_payload(parsed))
    if payloads:
        return payloads

    stripped = text.strip()
    starts = [i for i in (stripped.find("["), stripped.find("{")) if i >= 0]
    if not starts:
        return []
    start = min(starts)
    end = max(stripped.rfind("]"), stripped.rfind("}"))
    if end <= start:
        return []
    try:
        parsed = json.loads(stripped[start:end + 1])
    except json.JSONDecodeError:
        return []
    return _flatten_payload(parsed)


def _flatten_payload(parsed: Any) -> List[Dict[str, Any]]:
    if isinstance(parsed, dict):
        if isinstance(parsed.get("quizzes"), list):
            return [q for q in parsed["quizzes"] if isinstance(q, dict)]
        return [parsed]
    if isinstance(parsed, list):
        return [q for q in parsed if isinstance(q, dict)]
    return []


# ── free text ──────────────────────────────────────────────────────────

def _option_matches(text: str) -> List[re.Match]:
    for name, pattern in (("line", LINE_OPTION_RE), ("paren", PAREN_OPTION_RE), ("inline", INLINE_OPTION_RE)):
        matches = list(pattern.finditer(text))
        if not 2 <= len(matches) <= 4:
            continue
        labels = [normalize_label(m.group(1)) for m in matches]
        if len(set(labels)) != len(labels):
            continue
        if name == "inline":
            texts = [m.group(2).strip() for m in matches]
            if not all(0 < len(t) < MAX_INLINE_OPTION_CHARS for t in texts):
                continue
        return matches
    return []


def _extract_question(before: str) -> str:
    before = before.strip()
    bracketed = re.search(r"【[^】]+】\s*([\s\S]+?)$", before)
    if bracketed:
        return bracketed.group(1).strip()
    asked = re.search(r"[^。\n]+[？?]$", before)
    if asked:
        return asked.group(0).strip()
    paragraphs = re.split(r"\n\n+", before)
    last = paragraphs[-1].strip() if paragraphs else ""
    if last and len(last) < 200:
        return last
    return DEFAULT_QUESTION


def quiz_from_text(text: str, *, level: int = 0) -> Optional[Quiz]:
    """Recover a single multiple-choice quiz from free text."""
    # Tails are matched against text after the options so "Answer: B" is not an option
    matches = _option_matches(text)
    if not matches:
        return None

    options = [
        QuizOption(label=normalize_label(m.group(1)), text=m.group(2).strip())
        for m in matches
    ]
    question = _extract_question(text[:matches[0].start()])
    tail = text[matches[-1].end():]

    answer = ANSWER_RE.search(tail)
    correct = normalize_label(answer.group(1)) if answer else options[0].label
    explanation = EXPLANATION_RE.search(tail)
    hint = HINT_RE.search(tail)

    try:
        return Quiz(
            level=level,
            question=question,
            options=options,
            correct_label=correct,
            hint=hint.group(1).strip() if hint else None,
            detailed_explanation=explanation.group(1).strip() if explanation else None,
            source=QuizSource.TEXT,
        )
    except ValidationError as exc:
        logger.debug("Text quiz recovery failed validation: %s", exc)
        return None


def split_quiz_sections(text: str) -> List[str]:
    """Split text holding several questions into one section per question."""
    for pattern in QUESTION_SPLIT_PATTERNS:
        sections = [s for s in pattern.split(text) if s.strip()]
        if len(sections) >= 2:
            return sections
    return _split_by_option_sets(text)


def _split_by_option_sets(text: str) -> List[str]:
    sections: List[str] = []
    current: List[str] = []
    option_count = 0
    for line in text.split("\n"):
        option = LINE_OPTION_RE.match(line)
        if option and normalize_label(option.group(1)) == "A" and option_count >= 2:
            sections.append("\n".join(current))
            current = []
            option_count = 0
        if option:
            option_count += 1
        current.append(line)
    if current:
        sections.append("\n".join(current))
    return [s for s in sections if s.strip()]


def quizzes_from_text(text: str, *, start_level: int = 0) -> List[Quiz]:
    """All quizzes recoverable from text: structured payloads first, then free text."""
    structured = [
        q for q in (
            quiz_from_mapping(p, level=start_level + i, source=QuizSource.TEXT)
            for i, p in enumerate(parse_structured_quizzes(text))
        )
        if q is not None
    ]
    if structured:
        return structured

    quizzes: List[Quiz] = []
    for section in split_quiz_sections(text):
        quiz = quiz_from_text(section, level=start_level + len(quizzes))
        if quiz is not None:
            quizzes.append(quiz)
    return quizzes
