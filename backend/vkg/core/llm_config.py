"""
LLM Configuration for the Reasoning Oracle

The pipeline talks to the oracle through ReasoningOracle.complete(); the
production implementation wraps a LangChain chat model selected by provider.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional, Protocol, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from vkg.core.config import settings
from vkg.core.exceptions import ConfigurationException

if TYPE_CHECKING:
    from langchain_core.language_models.chat_models import BaseChatModel

logger = logging.getLogger(__name__)

MessageLike = Union[BaseMessage, dict]

_DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash",
    "bedrock": "anthropic.claude-3-5-sonnet-20241022-v2:0",
    "openai": "gpt-4o-mini",
}

_ROLE_TO_MESSAGE = {
    "system": SystemMessage,
    "user": HumanMessage,
    "human": HumanMessage,
    "assistant": AIMessage,
    "ai": AIMessage,
}


class ReasoningOracle(Protocol):
    """Text-completion service used for plan/SQL generation and answers"""

    async def complete(
        self,
        messages: Sequence[MessageLike],
        *,
        temperature: float,
        max_tokens: Optional[int] = None,
    ) -> str: ...


def to_langchain_messages(messages: Iterable[MessageLike]) -> list[BaseMessage]:
    """Convert {role, content} dicts to LangChain messages; BaseMessages pass through."""
    converted: list[BaseMessage] = []
    for message in messages:
        if isinstance(message, BaseMessage):
            converted.append(message)
            continue
        role = str(message.get("role", "user")).lower()
        message_cls = _ROLE_TO_MESSAGE.get(role)
        if message_cls is None:
            raise ValueError(f"Unsupported message role: {role}")
        converted.append(message_cls(content=message.get("content", "")))
    return converted


def get_query_llm_provider() -> str:
    """Resolve configured provider for query orchestration."""
    return (settings.QUERY_LLM_PROVIDER or "gemini").lower()


def get_query_llm_model(provider: Optional[str] = None) -> str:
    """Resolve model name for query orchestration."""
    if settings.QUERY_LLM_MODEL:
        return settings.QUERY_LLM_MODEL
    return _DEFAULT_MODELS.get(provider or get_query_llm_provider(), "unknown")


def get_llm(provider: Optional[str] = None) -> "BaseChatModel":
    """Initialize LLM client based on configured provider."""
    llm_provider = (provider or get_query_llm_provider()).lower()
    model_name = get_query_llm_model(llm_provider)

    if llm_provider == "gemini":
        from langchain_google_genai import ChatGoogleGenerativeAI

        logger.debug("Initializing Google Gemini LLM for query pipeline")
        return ChatGoogleGenerativeAI(
            model=model_name,
            google_api_key=settings.GOOGLE_API_KEY,
            temperature=0.0,
            max_output_tokens=settings.generation_max_tokens,
            top_p=0.95,
        )

    if llm_provider == "bedrock":
        from langchain_aws import ChatBedrock

        logger.debug("Initializing AWS Bedrock LLM for query pipeline")
        return ChatBedrock(
            model_id=model_name,
            region_name=settings.aws_region,
            model_kwargs={
                "temperature": 0.0,
                "max_tokens": settings.generation_max_tokens,
                "top_p": 0.95,
            },
        )

    if llm_provider == "openai":
        from langchain_openai import ChatOpenAI

        params: dict[str, Any] = {
            "model": model_name,
            "temperature": 0.0,
            "max_tokens": settings.generation_max_tokens,
        }
        if settings.OPENAI_API_KEY:
            params["api_key"] = settings.OPENAI_API_KEY
        if settings.OPENAI_BASE_URL:
            params["base_url"] = settings.OPENAI_BASE_URL
        logger.debug(f"Initializing OpenAI-compatible LLM for query pipeline (model={model_name})")
        return ChatOpenAI(**params)

    raise ConfigurationException(f"Unsupported QUERY_LLM_PROVIDER: {llm_provider}")


def _content_to_text(content: Any) -> str:
    # Gemini and Bedrock may return a list of content blocks
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content or "")


class LangChainOracle:
    """ReasoningOracle backed by a LangChain chat model.

    Sampling options are bound per call so one model instance serves both the
    low-temperature SQL generation and the answer synthesis.
    """

    def __init__(self, llm: Optional["BaseChatModel"] = None, timeout_seconds: Optional[float] = None):
        self._llm = llm
        self.timeout_seconds = timeout_seconds or settings.oracle_timeout_seconds

    @property
    def llm(self) -> "BaseChatModel":
        if self._llm is None:
            self._llm = get_llm()
        return self._llm

    def _bind_sampling(self, temperature: float, max_tokens: Optional[int]):
        kwargs: dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        try:
            return self.llm.bind(**kwargs)
        except (AttributeError, NotImplementedError):
            return self.llm

    async def complete(
        self,
        messages: Sequence[MessageLike],
        *,
        temperature: float,
        max_tokens: Optional[int] = None,
    ) -> str:
        runnable = self._bind_sampling(temperature, max_tokens)
        lc_messages = to_langchain_messages(messages)
        async with asyncio.timeout(self.timeout_seconds):
            response = await runnable.ainvoke(lc_messages)
        return _content_to_text(getattr(response, "content", response))
