"""
Canned quiz oracle for tests and offline demos.
"""

from typing import Any, List, Optional, Sequence, Union

from codegate.engines.unlock.models import GradeResult


class StaticQuizOracle:
    """Returns the same quizzes (and verdict) for every call and counts calls."""

    def __init__(
        self,
        quizzes: Union[Sequence[Any], str, None] = None,
        grade: Optional[GradeResult] = None,
    ):
        self.quizzes = quizzes if quizzes is not None else []
        self.grade = grade or GradeResult(is_correct=True, feedback="Looks right.")
        self.generate_calls: List[tuple] = []
        self.grade_calls: List[tuple] = []

    async def generate_quizzes(self, content: str, language: str, gate_count: int):
        self.generate_calls.append((content, language, gate_count))
        if isinstance(self.quizzes, str):
            return self.quizzes
        return list(self.quizzes)

    async def grade_freeform(self, question: str, user_answer: str, code_context: str) -> GradeResult:
        self.grade_calls.append((question, user_answer, code_context))
        return self.grade
