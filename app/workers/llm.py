from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from pydantic_ai import Agent
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.litellm import LiteLLMProvider

from app.config import get_settings
from app.constants.messages import MEDIA_PREVIEW_LABELS, MediaType, SenderKind
from app.infra.logging_config import get_logger
from app.schemas.messages import RawMessageRead

logger = get_logger()

SUMMARY_SYSTEM_PROMPT = (
    "Você resume atendimentos de WhatsApp para a equipe da loja. "
    "Em até cinco frases, diga o que o cliente pediu, o que já foi respondido "
    "e o que ainda está pendente. Responda em português."
)

_SPEAKERS = {
    SenderKind.EXTERNAL_CONTACT: "Cliente",
    SenderKind.INTERNAL_AGENT: "Atendente",
    SenderKind.AI_AGENT: "Assistente",
}


class Summarizer(Protocol):
    async def summarize(self, messages: Sequence[RawMessageRead]) -> str: ...


def transcript_for(messages: Sequence[RawMessageRead]) -> str:
    """Chronological ``Speaker: text`` lines; media becomes its label."""
    lines: List[str] = []
    for message in sorted(messages, key=lambda m: (m.created_at, m.id)):
        if message.media_type != MediaType.TEXT:
            text = MEDIA_PREVIEW_LABELS.get(message.media_type, "")
            if message.content and not message.content.startswith("["):
                text = f"{text} {message.content}".strip()
        else:
            text = (message.content or "").strip()
        if not text:
            continue
        lines.append(f"{_SPEAKERS.get(message.sender_kind, 'Cliente')}: {text}")
    return "\n".join(lines)


class ConversationSummarizer:
    def __init__(
        self,
        model_name: str,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> None:
        provider = LiteLLMProvider(api_key=api_key, api_base=api_base)
        model = OpenAIChatModel(model_name, provider=provider)
        logger.info(f"Initializing conversation summarizer with model {model_name}")
        self._agent = Agent(model, system_prompt=system_prompt or SUMMARY_SYSTEM_PROMPT)

    async def summarize(self, messages: Sequence[RawMessageRead]) -> str:
        transcript = transcript_for(messages)
        if not transcript:
            return ""
        result = await self._agent.run(transcript)
        return str(result.output).strip()


def build_summarizer_from_env() -> ConversationSummarizer:
    settings = get_settings()
    logger.info(
        "Summarizer config: model=%s, api_key=%s, api_base=%s",
        settings.llm_model,
        "set" if settings.litellm_api_key else "not set",
        settings.litellm_api_base or "(default)",
    )
    if not settings.litellm_api_key:
        logger.warning(
            "LITELLM_API_KEY is not set; set it to a valid OpenAI or LiteLLM API key to avoid 401 errors."
        )
    return ConversationSummarizer(
        model_name=settings.llm_model,
        api_key=settings.litellm_api_key,
        api_base=settings.litellm_api_base,
    )
