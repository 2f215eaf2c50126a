"""
Fallback quiz synthesis - local self-check questions when the oracle is
silent or unavailable.

The question kind follows the gate's position:
- early gates ask about purpose
- middle gates ask about the pattern in use
- late gates ask about design intent

Options are picked from traits detected in the code. The first option is
always the expected answer.
"""

import re
from typing import Callable, List, Optional, Tuple

from codegate.engines.unlock.models import Artifact, Quiz, QuizOption, QuizSource
from codegate.engines.unlock.visibility_planner import LOGIC_BAND, STRUCTURE_BAND

OptionSet = List[Tuple[str, str]]
TraitRule = Tuple[Callable[[str], bool], OptionSet, str]

_QUESTIONS = {
    "purpose": [
        "What is the main purpose of {title} ({language}, {lines} lines)?",
        "What is {title} ({language}, {lines} lines) trying to achieve?",
    ],
    "pattern": [
        "Which approach does {title} ({language}, {lines} lines) follow?",
        "Which pattern is the structure of {title} ({language}, {lines} lines) based on?",
    ],
    "design": [
        "Why was {title} ({language}, {lines} lines) written this way?",
        "What is the main benefit of how {title} ({language}, {lines} lines) is implemented?",
    ],
}

_HINTS = {
    "purpose": "Think about what the code is for.",
    "pattern": "Think about how the code is organized.",
    "design": "Think about the trade-offs behind the implementation.",
}


def _has(pattern: str, flags: int = 0) -> Callable[[str], bool]:
    compiled = re.compile(pattern, flags)
    return lambda code: compiled.search(code) is not None


_PURPOSE_RULES: List[TraitRule] = [
    (
        _has(r"fetch\(|axios|requests\.|httpx|\bapi\b|\bhttp", re.I),
        [
            ("Talk to an external service", "The code contains network or API calls, so communicating with another service is its main job."),
            ("Process purely local data", "The code makes network calls, so it is not limited to local data."),
            ("Control what the UI displays", "Display may be involved, but the network calls are the core of it."),
        ],
        "This code makes network calls.",
    ),
    (
        _has(r"useState|setState|\bstate\b"),
        [
            ("Manage state", "State APIs are used to hold and update values over time."),
            ("Transform data", "Transformation may happen, but holding state is the main job."),
            ("Run side effects", "Side effects are not the focus; state management is."),
        ],
        "This code is about state management.",
    ),
    (
        _has(r"validate|schema|check|verify", re.I),
        [
            ("Validate input data", "Validation keywords show that checking data is the main job."),
            ("Save data", "Saving usually follows validation, but this code validates."),
            ("Handle errors", "Validation errors are handled, but checking data is the goal."),
        ],
        "This code checks data.",
    ),
    (
        _has(r"for\s*\(|for\s+\w+\s+in\b|while\s*\(|\.map\(|\.forEach\("),
        [
            ("Process a collection of items", "Loops over many items show it works on a collection."),
            ("Process a single value", "A loop is used, so it handles more than one value."),
            ("Handle events", "Loops can serve event handling, but here they process data."),
        ],
        "Look at what the loops iterate over.",
    ),
]

_PURPOSE_DEFAULT: OptionSet = [
    ("Perform a specific task", "The code implements one concrete piece of behavior."),
    ("Provide generic utilities", "It is written for one purpose rather than as a general helper."),
    ("Manage configuration", "Nothing here is configuration; it performs a task."),
]

_PATTERN_RULES: List[TraitRule] = [
    (
        _has(r"\buse[A-Z]\w+"),
        [
            ("Custom hook", "A useXxx function packages reusable stateful logic."),
            ("Higher-order component", "Nothing wraps a component here; hooks are used."),
            ("Render props", "No function is passed as a prop; this is a hook."),
        ],
        "Look at the use* functions.",
    ),
    (
        _has(r"create[A-Z]\w+|factory", re.I),
        [
            ("Factory", "A createXxx function builds and returns new objects."),
            ("Singleton", "New objects are produced on each call, so it is not a singleton."),
            ("Builder", "There is no step-by-step chained construction."),
        ],
        "Look at how objects are created.",
    ),
    (
        _has(r"subscribe|observe|listener|\bon[A-Z]\w+", re.I),
        [
            ("Observer", "Listeners subscribe and are notified of changes."),
            ("Publish/subscribe broker", "There is no separate message broker between the parties."),
            ("Polling", "Changes are pushed to listeners rather than polled."),
        ],
        "Look at who gets notified and when.",
    ),
    (
        _has(r"\bclass\s+\w+"),
        [
            ("Object-oriented design", "A class bundles state and behavior together."),
            ("Functional style", "Functional code favors pure functions; this is class-based."),
            ("Procedural script", "Behavior is grouped in a class rather than a flat sequence."),
        ],
        "Look at the class declarations.",
    ),
]

_PATTERN_DEFAULT: OptionSet = [
    ("Module with a small public surface", "Related functions are grouped and only a few are exposed."),
    ("Grab-bag of utilities", "The functions serve one module rather than unrelated helpers."),
    ("Single procedural script", "The code is organized into reusable units."),
]

_DESIGN_RULES: List[TraitRule] = [
    (
        lambda code: bool(re.search(r"\basync\b|\bawait\b", code))
        and bool(re.search(r"try\s*[{:]|catch\s*\(|\.catch\(|except\b", code)),
        [
            ("Async work with explicit error handling", "Awaited calls are wrapped so failures are caught without breaking the flow."),
            ("Simple synchronous code would do", "The work involves I/O that has to be awaited."),
            ("Error handling is unnecessary", "Async I/O can fail, so handling errors is required."),
        ],
        "Look at how awaited calls can fail.",
    ),
    (
        _has(r"useMemo|useCallback|memo\(|lru_cache|@cache\b"),
        [
            ("Avoid repeated work", "Memoization skips recomputing values that did not change."),
            ("Improve readability", "Memoization targets performance rather than readability."),
            ("Reduce memory use", "Caching actually keeps more in memory to save computation."),
        ],
        "Look at what gets cached.",
    ),
    (
        _has(r":\s*\w+|\binterface\s+|\btype\s+\w+\s*=|->\s*\w+"),
        [
            ("Type safety and tooling support", "Type annotations catch mistakes early and help editors."),
            ("Documentation only", "Types document code, but checking correctness is the main gain."),
            ("Guaranteed runtime safety", "Static types do not guarantee safety at runtime."),
        ],
        "Look at the type annotations.",
    ),
]

_DESIGN_DEFAULT: OptionSet = [
    ("Balance maintainability and extensibility", "Clear responsibilities make later changes easier."),
    ("Keep the implementation as short as possible", "Brevity matters, but the structure favors maintainability."),
    ("Maximize raw performance", "Nothing here trades clarity for speed."),
]

_RULES = {
    "purpose": (_PURPOSE_RULES, _PURPOSE_DEFAULT),
    "pattern": (_PATTERN_RULES, _PATTERN_DEFAULT),
    "design": (_DESIGN_RULES, _DESIGN_DEFAULT),
}


def question_kind(level: int, total_gates: int) -> str:
    """Which question set applies to a gate level."""
    if total_gates <= 0:
        return "purpose"
    position = level / total_gates
    if position < STRUCTURE_BAND:
        return "purpose"
    if position < LOGIC_BAND:
        return "pattern"
    return "design"


def _pick(kind: str, code: str) -> Tuple[OptionSet, Optional[str]]:
    rules, default = _RULES[kind]
    for matches, options, hint in rules:
        if matches(code):
            return options, hint
    return default, None


def build_fallback_quiz(artifact: Artifact, level: int, total_gates: int) -> Quiz:
    """Synthesize a self-check quiz for one gate of an artifact."""
    kind = question_kind(level, total_gates)
    options, trait_hint = _pick(kind, artifact.content)
    templates = _QUESTIONS[kind]
    question = templates[artifact.line_count % len(templates)].format(
        title=artifact.title,
        language=artifact.language,
        lines=artifact.line_count,
    )
    hint = _HINTS[kind] if trait_hint is None else f"{_HINTS[kind]} {trait_hint}"

    return Quiz(
        level=level,
        question=question,
        options=[
            QuizOption(label="ABCD"[i], text=text, explanation=explanation)
            for i, (text, explanation) in enumerate(options)
        ],
        correct_label="A",
        hint=hint,
        detailed_explanation=options[0][1],
        code_language=artifact.language,
        source=QuizSource.FALLBACK,
    )
