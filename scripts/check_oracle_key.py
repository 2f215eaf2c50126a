"""Check that the quiz oracle has a usable OpenAI key and can generate a quiz."""
import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()

from codegate.ai.openai_oracle import OpenAIQuizOracle
from codegate.config import get_settings

SAMPLE = """function add(a, b) {
  // sum two numbers
  const result = a + b;
  return result;
}"""


async def main():
    s = get_settings()
    k = (s.openai_api_key or "").strip()
    print(f"Key length: {len(k)}")
    print(f"Is placeholder: {k.startswith('sk-your-')}")
    oracle = OpenAIQuizOracle(s)
    if not oracle.is_configured:
        print("FAIL: OPENAI_API_KEY is not set; quizzes will use local fallbacks")
        sys.exit(1)
    quizzes = await oracle.generate_quizzes(SAMPLE, "javascript", 1)
    print(f"OK: model {s.quiz_model} returned {len(quizzes)} quiz payload(s)")


if __name__ == "__main__":
    asyncio.run(main())
