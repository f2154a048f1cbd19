"""Text agent: plain-text generation behind /claude-snack and /claude-report."""
from functools import lru_cache

from pydantic_ai import Agent
from pydantic_ai.settings import ModelSettings

from macro_journal.config import settings

SYSTEM_PROMPT = (
    "You write short, encouraging nutrition coaching text for the Daily Macro Journal app. "
    "Never shame the user. Reply with the requested text only, without preamble."
)


def build_text_agent(model=None) -> Agent:
    return Agent(
        model=model or settings.ai_model,
        instructions=SYSTEM_PROMPT,
        retries=1,
        model_settings=ModelSettings(max_tokens=settings.ai_max_tokens),
    )


@lru_cache(maxsize=1)
def get_text_agent() -> Agent:
    """FastAPI dependency; built on first use so importing the app needs no API key."""
    return build_text_agent()
