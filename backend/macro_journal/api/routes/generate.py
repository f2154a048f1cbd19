"""
Text-generation proxy used by the insight engine: POST {prompt} → {text}.
/claude-snack serves snack suggestions and the daily quote; /claude-report the daily report.
Failures return 5xx {error} (503 when the model provider is over quota or rate limited).
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic_ai import Agent

from macro_journal.agents.text_agent import get_text_agent
from macro_journal.core.constants import REPORT_ENDPOINT, SNACK_ENDPOINT
from macro_journal.core.errors import agent_error_to_http

router = APIRouter()
logger = logging.getLogger(__name__)


class PromptRequest(BaseModel):
    prompt: str | None = None


async def _generate(body: PromptRequest, agent: Agent, label: str):
    prompt = (body.prompt or "").strip()
    if not prompt:
        return JSONResponse(status_code=400, content={"error": "Missing prompt"})
    try:
        result = await agent.run(prompt)
    except Exception as e:
        logger.exception("%s generation failed", label)
        http_exc = agent_error_to_http(e)
        return JSONResponse(status_code=http_exc.status_code, content={"error": http_exc.detail})
    text = result.output if isinstance(result.output, str) else str(result.output)
    return {"text": text.strip()}


@router.post(SNACK_ENDPOINT)
async def generate_snack(body: PromptRequest, agent: Agent = Depends(get_text_agent)):
    """Snack suggestion or daily quote text."""
    return await _generate(body, agent, "Snack")


@router.post(REPORT_ENDPOINT)
async def generate_report(body: PromptRequest, agent: Agent = Depends(get_text_agent)):
    """Daily macro report text."""
    return await _generate(body, agent, "Report")
