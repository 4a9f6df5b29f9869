"""Judge LLM factory with fallback provider chain.

Primary: OpenRouter
Fallback 1: Groq (cloud, fast inference)
Fallback 2: Ollama (local)

Model, temperatures and fallback providers are configured in abtest.toml.

Each provider is piped with a response-length validator so that suspiciously
short responses (<min_response_length chars) trigger a cascade to the next
provider via with_fallbacks().
"""

from __future__ import annotations

import asyncio

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import Runnable, RunnableLambda
from langchain_openai import ChatOpenAI

from prompt_expert.config import ABTestSettings, Settings, get_abtest_settings, get_settings
from prompt_expert.errors import JudgeTimeoutError

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Response length validator
# ---------------------------------------------------------------------------


def _make_length_validator(min_chars: int) -> RunnableLambda:
    """Runnable that raises ``ValueError`` on a too-short response.

    ``with_fallbacks()`` catches the error and tries the next provider.
    """

    def _validate(response):  # noqa: ANN001
        stripped = (response.content or "").strip()
        if len(stripped) < min_chars:
            raise ValueError(
                f"Judge response too short ({len(stripped)} chars, minimum {min_chars})"
            )
        return response

    return RunnableLambda(_validate)


# ---------------------------------------------------------------------------
# LLM factory
# ---------------------------------------------------------------------------


def create_llm(
    purpose: str = "evaluation",
    settings: Settings | None = None,
    abtest_settings: ABTestSettings | None = None,
) -> Runnable:
    """Create the judge LLM for one kind of call.

    Args:
        purpose: ``evaluation``, ``comparison`` or ``verdict``; selects the
            temperature and max_tokens from the [judge] table.
        settings: Environment settings; loaded from env if not provided.
        abtest_settings: abtest.toml settings; loaded if not provided.

    Returns:
        A Runnable: the primary chain, with fallbacks if any are enabled.
    """
    settings = settings or get_settings()
    cfg = abtest_settings or get_abtest_settings()
    temperature = cfg.temperature_for(purpose)
    max_tokens = cfg.max_tokens_for(purpose)
    timeout = cfg.defaults.timeout

    primary = ChatOpenAI(
        model=cfg.defaults.model,
        temperature=temperature,
        max_tokens=max_tokens,
        openai_api_key=settings.openrouter_api_key,
        openai_api_base=settings.openrouter_base_url,
        timeout=timeout,
        max_retries=0,  # retries belong to the recovery dispatcher
    )
    validator = _make_length_validator(cfg.defaults.min_response_length)
    primary_chain: Runnable = primary | validator

    fallbacks: list[Runnable] = []

    if cfg.providers.groq.enabled and settings.groq_api_key:
        from langchain_groq import ChatGroq

        groq_llm = ChatGroq(
            model=cfg.providers.groq.default_model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=settings.groq_api_key,
            timeout=timeout,
        )
        fallbacks.append(groq_llm | validator)
        logger.debug("groq_fallback_configured", purpose=purpose)

    if cfg.providers.ollama.enabled:
        from langchain_ollama import ChatOllama

        ollama_llm = ChatOllama(
            model=cfg.providers.ollama.default_model,
            temperature=temperature,
            num_predict=max_tokens,
            base_url=cfg.providers.ollama.base_url or "http://localhost:11434",
        )
        fallbacks.append(ollama_llm | validator)
        logger.debug("ollama_fallback_configured", purpose=purpose)

    if fallbacks:
        return primary_chain.with_fallbacks(fallbacks)
    return primary_chain


# ---------------------------------------------------------------------------
# Judge
# ---------------------------------------------------------------------------


class LLMJudge:
    """The judgment service backed by a LangChain runnable.

    Every call is bounded by ``timeout`` seconds; a timeout raises
    ``JudgeTimeoutError`` so the recovery table can retry it.
    """

    def __init__(self, llm: Runnable, timeout: float = 120.0) -> None:
        self._llm = llm
        self._timeout = timeout

    @classmethod
    def from_settings(
        cls,
        purpose: str = "evaluation",
        settings: Settings | None = None,
        abtest_settings: ABTestSettings | None = None,
    ) -> LLMJudge:
        cfg = abtest_settings or get_abtest_settings()
        return cls(create_llm(purpose, settings, cfg), timeout=cfg.defaults.timeout)

    async def judge(self, system: str, user: str) -> str:
        messages = [SystemMessage(content=system), HumanMessage(content=user)]
        try:
            response = await asyncio.wait_for(self._llm.ainvoke(messages), self._timeout)
        except TimeoutError as exc:
            raise JudgeTimeoutError(f"Judge call timed out after {self._timeout}s") from exc
        return response.content if isinstance(response.content, str) else str(response.content)
