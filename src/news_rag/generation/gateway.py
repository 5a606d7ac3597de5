"""
Generation gateway.

Turns a question, retrieved context and recent history into an answer using a
casual-llm provider. Overload responses are retried with a fixed backoff;
every other failure, and any failure after the last attempt, produces the
extractive fallback answer instead of an error.
"""

import asyncio
import logging
import math
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence

from casual_llm import LLMProvider, SystemMessage, UserMessage

from news_rag.config import Settings
from news_rag.errors import AuthError, DegradedModeNotice, is_overload_error
from news_rag.generation.fallback import FALLBACK_MODEL_NAME, fallback_response
from news_rag.generation.prompts import PROMPT_HISTORY_TURNS, SYSTEM_PROMPT, build_user_prompt
from news_rag.models import ChatMessage, GenerationResult, VectorSearchResult
from news_rag.results import Fallback, Ok, capture

logger = logging.getLogger(__name__)

PROBE_PROMPT = "Hello, this is a test message. Please respond with 'Test successful'."


def estimate_tokens(text: str) -> int:
    """Rough token count (about four characters per token)."""
    return math.ceil(len(text) / 4)


class GenerationGateway:
    """
    Cited answers from a language model, with an extractive fallback.

    Modes:
    - model: requests go to the provider
    - fallback: no provider is configured, or it failed its startup probe or
      rejected our credentials; every answer is extractive for the rest of
      the process
    """

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        model_name: str = "gemini-1.5-flash",
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        max_attempts: int = 3,
        retry_backoff: float = 5.0,
        timeout: float = 30.0,
        init_timeout: float = 10.0,
        history_turns: int = PROMPT_HISTORY_TURNS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            provider: casual-llm provider; None runs in fallback mode
            model_name: Reported in results and health checks
            temperature: Sampling temperature
            max_tokens: Optional completion limit
            max_attempts: Attempts per request when the model is overloaded
            retry_backoff: Seconds between overload retries
            timeout: Seconds allowed per answer (retries included) and per
                streamed fragment
            init_timeout: Seconds allowed for the startup probe
            history_turns: Previous turns included in the prompt
            sleep: Backoff sleep (tests pass a no-op)
        """
        self.provider = provider
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = retry_backoff
        self.timeout = timeout
        self.init_timeout = init_timeout
        self.history_turns = history_turns
        self._sleep = sleep

        self.is_initialized = False
        self.notice: Optional[DegradedModeNotice] = None
        if provider is None:
            self.notice = DegradedModeNotice("generation", "no language model configured").log()

        self.llm_call_count = 0
        self.llm_success_count = 0
        self.fallback_count = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationGateway":
        provider = None
        api_key = settings.llm_api_key_value
        if api_key or settings.llm_provider == "ollama":
            from casual_llm import ModelConfig, Provider, create_provider

            provider_map = {
                "openai": Provider.OPENAI,
                "ollama": Provider.OLLAMA,
            }
            provider = create_provider(
                ModelConfig(
                    name=settings.llm_model,
                    provider=provider_map[settings.llm_provider],
                    base_url=settings.llm_base_url,
                    api_key=api_key,
                )
            )

        return cls(
            provider=provider,
            model_name=settings.llm_model,
            temperature=settings.llm_temperature,
            max_attempts=settings.llm_max_attempts,
            retry_backoff=settings.llm_retry_backoff,
            timeout=settings.llm_timeout,
            init_timeout=settings.llm_init_timeout,
        )

    @property
    def mode(self) -> str:
        return "fallback" if self.notice is not None else "model"

    def _disable(self, reason: str) -> None:
        if self.notice is None:
            self.notice = DegradedModeNotice("generation", reason).log()

    def build_messages(
        self,
        query: str,
        context: Sequence[VectorSearchResult],
        history: Optional[List[ChatMessage]] = None,
    ) -> list:
        return [
            SystemMessage(content=SYSTEM_PROMPT),
            UserMessage(content=build_user_prompt(query, context, history, self.history_turns)),
        ]

    async def _chat(self, messages: list) -> str:
        self.llm_call_count += 1
        response = await self.provider.chat(
            messages,
            response_format="text",
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        self.llm_success_count += 1
        return response.content or ""

    async def _chat_with_retry(self, messages: list) -> str:
        """Call the model, retrying only while it reports being overloaded."""
        attempt = 1
        while True:
            try:
                return await self._chat(messages)
            except Exception as e:
                if attempt >= self.max_attempts or not is_overload_error(e):
                    raise
                logger.warning(
                    f"Model overloaded, retrying in {self.retry_backoff}s "
                    f"({self.max_attempts - attempt} retries left)"
                )
                await self._sleep(self.retry_backoff)
                attempt += 1

    async def initialize(self) -> bool:
        """
        Probe the provider once.

        Returns:
            True if the model answered; False if the gateway is in fallback mode
        """
        if self.mode == "fallback":
            self.is_initialized = True
            return False

        messages = [UserMessage(content=PROBE_PROMPT)]
        result = await capture(
            self._chat_with_retry(messages), provider="generation", timeout=self.init_timeout
        )

        if isinstance(result, Ok) and result.value.strip():
            logger.info(f"Generation gateway initialized ({self.model_name})")
        elif isinstance(result, Ok):
            self._disable("empty response to startup probe")
        else:
            self._disable(f"startup probe failed: {result.reason}")

        self.is_initialized = True
        return self.mode == "model"

    def fallback(self, query: str, context: Sequence[VectorSearchResult]) -> GenerationResult:
        """The extractive answer for ``context`` (or "not found" when empty)."""
        self.fallback_count += 1
        return GenerationResult(
            text=fallback_response(query, context),
            model=FALLBACK_MODEL_NAME,
            token_estimate=0,
            fallback=True,
        )

    async def generate(
        self,
        query: str,
        context: Sequence[VectorSearchResult],
        history: Optional[List[ChatMessage]] = None,
    ) -> GenerationResult:
        """
        Answer ``query`` from ``context``. Never raises.

        Args:
            query: The user's question
            context: Retrieved chunks, most relevant first
            history: Previous turns, oldest first

        Returns:
            GenerationResult with ``fallback=True`` when the extractive path was used
        """
        if self.mode == "fallback":
            return self.fallback(query, context)

        messages = self.build_messages(query, context, history)
        result = await capture(
            self._chat_with_retry(messages), provider="generation", timeout=self.timeout
        )

        if isinstance(result, Fallback):
            if isinstance(result.error, AuthError):
                self._disable(f"authentication rejected: {result.error}")
            logger.error(f"Generation failed, using fallback response: {result.reason}")
            return self.fallback(query, context)

        text = result.value.strip()
        if not text:
            logger.warning("Model returned an empty answer, using fallback response")
            return self.fallback(query, context)

        prompt_text = "".join(message.content for message in messages)
        return GenerationResult(
            text=text,
            model=self.model_name,
            token_estimate=estimate_tokens(prompt_text + text),
            fallback=False,
        )

    async def generate_streaming(
        self,
        query: str,
        context: Sequence[VectorSearchResult],
        history: Optional[List[ChatMessage]] = None,
    ) -> AsyncIterator[str]:
        """
        Yield the answer in fragments.

        Uses the provider's ``stream()`` when it has one; otherwise (and in
        fallback mode) the complete answer is yielded as a single fragment.
        A stream that goes ``timeout`` seconds without a fragment is treated
        as failed.
        """
        stream = getattr(self.provider, "stream", None) if self.mode == "model" else None
        if stream is None:
            result = await self.generate(query, context, history)
            yield result.text
            return

        messages = self.build_messages(query, context, history)
        emitted = False
        try:
            fragments = stream(messages, temperature=self.temperature).__aiter__()
            while True:
                try:
                    fragment = await asyncio.wait_for(fragments.__anext__(), timeout=self.timeout)
                except StopAsyncIteration:
                    break
                text = fragment if isinstance(fragment, str) else getattr(fragment, "content", None)
                if text:
                    emitted = True
                    yield text
        except Exception as e:
            logger.error(f"Streaming failed: {e}")
            if not emitted:
                result = await self.generate(query, context, history)
                yield result.text

    async def health_check(self) -> dict:
        if self.mode == "fallback":
            return {
                "status": "fallback",
                "service": "fallback-generator",
                "reason": self.notice.reason,
            }

        result = await capture(
            self._chat([UserMessage(content=PROBE_PROMPT)]),
            provider="generation",
            timeout=self.init_timeout,
        )
        if isinstance(result, Ok):
            return {"status": "healthy", "service": self.model_name}
        return {"status": "error", "service": self.model_name, "error": result.reason}

    def get_config(self) -> dict:
        return {
            "model_name": self.model_name,
            "is_initialized": self.is_initialized,
            "has_provider": self.provider is not None,
            "mode": self.mode,
        }

    def get_metrics(self) -> dict:
        metrics = {
            "llm_call_count": self.llm_call_count,
            "llm_success_count": self.llm_success_count,
            "generation_fallback_count": self.fallback_count,
        }
        if self.llm_call_count > 0:
            success_rate = (self.llm_success_count / self.llm_call_count) * 100
            metrics["llm_success_rate_percent"] = round(success_rate, 2)
        return metrics
