"""Chart analysis through LiteLLM with image content parts."""

import base64
import logging
import os
from dataclasses import dataclass

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_litellm import ChatLiteLLM

from decyphers.analysis.charts import ChartImage
from decyphers.analysis.prompts import SYSTEM_PROMPT, user_prompt
from decyphers.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    text: str
    model: str
    tokens_used: int


def _export_provider_keys() -> None:
    # LiteLLM reads provider keys from the environment
    if settings.openrouter_api_key:
        os.environ["OPENROUTER_API_KEY"] = settings.openrouter_api_key
    if settings.openai_api_key:
        os.environ["OPENAI_API_KEY"] = settings.openai_api_key
    if settings.anthropic_api_key:
        os.environ["ANTHROPIC_API_KEY"] = settings.anthropic_api_key


def create_analysis_llm() -> ChatLiteLLM:
    _export_provider_keys()
    return ChatLiteLLM(
        model=settings.analysis_llm_model,
        temperature=0.2,
        max_tokens=2048,
    )


def _image_part(image: ChartImage) -> dict:
    encoded = base64.b64encode(image.data).decode("ascii")
    return {"type": "image_url", "image_url": {"url": f"data:{image.content_type};base64,{encoded}"}}


def _text_of(content) -> str:
    if isinstance(content, str):
        return content
    # Some providers return a list of content blocks
    return "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)


async def analyze_charts(
    symbol: str, images: list[ChartImage], llm: ChatLiteLLM | None = None
) -> AnalysisResult:
    """Ask the model for a technical analysis of the rendered charts."""
    if not images:
        raise ValueError("At least one chart image is required for analysis")

    llm = llm or create_analysis_llm()
    intervals = [image.interval for image in images]
    message = HumanMessage(
        content=[{"type": "text", "text": user_prompt(symbol, intervals)}]
        + [_image_part(image) for image in images]
    )
    response = await llm.ainvoke([SystemMessage(content=SYSTEM_PROMPT), message])

    usage = getattr(response, "usage_metadata", None) or {}
    tokens_used = int(usage.get("total_tokens", 0))
    logger.info("Analysed %s on %s (%d tokens)", symbol, intervals, tokens_used)
    return AnalysisResult(
        text=_text_of(response.content),
        model=settings.analysis_llm_model,
        tokens_used=tokens_used,
    )
