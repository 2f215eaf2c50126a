"""
Quiz oracles - outbound question generation and grading.

OpenAIQuizOracle talks to the OpenAI API; StaticQuizOracle returns canned
answers for tests and offline use.
"""

from codegate.ai.openai_oracle import OpenAIQuizOracle
from codegate.ai.static_oracle import StaticQuizOracle

__all__ = [
    "OpenAIQuizOracle",
    "StaticQuizOracle",
]
