"""
OpenAI-backed quiz oracle.

Uses chat completions with a JSON response format. With no API key (or the
sk-your-... placeholder from .env.example) generation returns nothing so the
adapter falls back to local quizzes, and grading reports the oracle as
unavailable.
"""

import json
from typing import Any, Dict, List, Optional, Union

from codegate.config import Settings, get_settings
from codegate.engines.unlock.errors import OracleUnavailableError
from codegate.engines.unlock.models import GradeResult
from codegate.logging_config import get_logger

logger = get_logger(__name__)

MAX_CODE_CHARS = 6000

QUIZ_SYSTEM_PROMPT = (
    "You write short multiple-choice comprehension checks for generated code. "
    "Output valid JSON only."
)

GRADING_SYSTEM_PROMPT = (
    "You grade a learner's free-form explanation of code. Be fair: accept "
    "answers that capture the key idea even when wording is imprecise. "
    "Output valid JSON only."
)


def _quiz_prompt(content: str, language: str, gate_count: int) -> str:
    return (
        f"Write {gate_count} multiple-choice questions about the {language} code below.\n"
        "Question 1 checks the overall purpose, later questions go deeper into "
        "control flow, then design decisions.\n"
        "Each question has 3 or 4 options labeled A-D and exactly one correct option.\n\n"
        'Return JSON: {"quizzes": [{"question": str, "options": '
        '[{"label": "A", "text": str, "explanation": str}], "correctLabel": "A", '
        '"hint": str, "detailedExplanation": str}]}\n\n'
        f"CODE:\n{content[:MAX_CODE_CHARS]}"
    )


def _grading_prompt(question: str, user_answer: str, code_context: str) -> str:
    return (
        f"QUESTION: {question}\n\n"
        f"LEARNER ANSWER: {user_answer}\n\n"
        f"CODE:\n{code_context[:MAX_CODE_CHARS]}\n\n"
        'Return JSON: {"is_correct": bool, "feedback": str, "explanation": str}'
    )


class OpenAIQuizOracle:
    """QuizOracle implementation on top of the OpenAI chat completions API."""

    def __init__(self, settings: Optional[Settings] = None, client: Any = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def is_configured(self) -> bool:
        key = (self.settings.openai_api_key or "").strip()
        return self._client is not None or bool(key and not key.startswith("sk-your-"))

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key.strip(),
                timeout=self.settings.oracle_timeout_seconds,
            )
        return self._client

    async def _complete_json(self, model: str, system: str, prompt: str, max_tokens: int) -> str:
        response = await self._get_client().chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            max_tokens=max_tokens,
            temperature=0.3,
        )
        return (response.choices[0].message.content or "").strip()

    async def generate_quizzes(
        self,
        content: str,
        language: str,
        gate_count: int,
    ) -> Union[List[Dict[str, Any]], str]:
        """Structured quiz mappings, or the raw text when it is not valid JSON."""
        if not self.is_configured:
            logger.info("No OpenAI key configured, skipping quiz generation")
            return []

        text = await self._complete_json(
            self.settings.quiz_model,
            QUIZ_SYSTEM_PROMPT,
            _quiz_prompt(content, language, gate_count),
            max_tokens=1500,
        )
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Quiz response was not JSON, handing back raw text")
            return text

        if isinstance(payload, dict) and isinstance(payload.get("quizzes"), list):
            return payload["quizzes"]
        if isinstance(payload, list):
            return payload
        return [payload] if isinstance(payload, dict) else []

    async def grade_freeform(self, question: str, user_answer: str, code_context: str) -> GradeResult:
        if not self.is_configured:
            raise OracleUnavailableError("Free-form grading needs an OpenAI API key")

        text = await self._complete_json(
            self.settings.grading_model,
            GRADING_SYSTEM_PROMPT,
            _grading_prompt(question, user_answer, code_context),
            max_tokens=400,
        )
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise OracleUnavailableError("Grading response was not valid JSON") from exc

        return GradeResult(
            is_correct=bool(payload.get("is_correct", False)),
            feedback=str(payload.get("feedback") or ""),
            explanation=payload.get("explanation"),
        )
