"""
AI text generation using Groq (primary) and Gemini (fallback).

`AIClient.generate(prompt)` is the only capability the pipeline needs. Each
call tries Groq then Gemini; a call that yields nothing is retried according
to an explicit RetryPolicy. The policy is independent of the per-chart
regeneration limit enforced by the regeneration controller.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from groq import Groq

from sheetlens.core.config import Settings, get_settings
from sheetlens.core.performance import track_performance
from sheetlens.services.prompts import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

# Provider clients (singletons)
_groq_client: Optional[Groq] = None
_gemini_model = None  # Lazy loaded to avoid the import if not needed

PROVIDER_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff for one logical AI call."""
    max_attempts: int = 2
    backoff_seconds: float = 0.5
    backoff_multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return self.backoff_seconds * (self.backoff_multiplier ** (attempt - 1))

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(max_attempts=settings.ai_max_attempts, backoff_seconds=settings.ai_backoff_seconds)


def get_groq_client() -> Optional[Groq]:
    """Get or create Groq client singleton."""
    global _groq_client
    if _groq_client is None:
        api_key = os.getenv("GROQ_API_KEY")
        if api_key:
            _groq_client = Groq(api_key=api_key)
            logger.info("Groq AI client initialized")
    return _groq_client


def get_gemini_model():
    """Get or create Gemini model singleton."""
    global _gemini_model
    if _gemini_model is None:
        api_key = os.getenv("GEMINI_API_KEY")
        if api_key:
            import google.generativeai as genai
            genai.configure(api_key=api_key)
            settings = get_settings()
            _gemini_model = genai.GenerativeModel(settings.gemini_model)
            logger.info(f"Gemini AI fallback initialized with model: {settings.gemini_model}")
    return _gemini_model


def reset_providers():
    """Forget provider singletons (used after API keys change and in tests)."""
    global _groq_client, _gemini_model
    _groq_client = None
    _gemini_model = None


def _call_groq(prompt: str, system_prompt: str, settings: Settings) -> Optional[str]:
    client = get_groq_client()
    if not client:
        return None

    response = client.chat.completions.create(
        model=settings.groq_model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt}
        ],
        max_tokens=settings.ai_max_tokens,
        temperature=0.3,
        timeout=PROVIDER_TIMEOUT_SECONDS,
    )
    return response.choices[0].message.content


def _call_gemini(prompt: str, system_prompt: str) -> Optional[str]:
    model = get_gemini_model()
    if not model:
        return None

    response = model.generate_content(
        f"{system_prompt}\n\n{prompt}",
        request_options={"timeout": PROVIDER_TIMEOUT_SECONDS},
    )
    return response.text


def call_ai_with_fallback(prompt: str, system_prompt: str = SYSTEM_PROMPT, settings: Optional[Settings] = None) -> Optional[str]:
    """
    One blocking attempt across providers.

    Order: Groq -> Gemini -> None
    """
    settings = settings or get_settings()
    try:
        result = _call_groq(prompt, system_prompt, settings)
        if result:
            logger.debug("AI response from Groq")
            return result
    except Exception as e:
        error_str = str(e).lower()
        if "rate" in error_str or "limit" in error_str or "429" in error_str:
            logger.warning(f"Groq rate limited, trying Gemini fallback: {e}")
        else:
            logger.warning(f"Groq error, trying fallback: {e}")

    try:
        result = _call_gemini(prompt, system_prompt)
        if result:
            logger.info("AI response from Gemini (fallback)")
            return result
    except Exception as e:
        logger.error(f"Gemini fallback also failed: {e}")

    return None


class AIClient:
    """Async `generate(prompt)` over the blocking provider SDKs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        call: Optional[Callable[[str, str], Optional[str]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self._call = call or (lambda prompt, system: call_ai_with_fallback(prompt, system, self.settings))
        self._sleep = sleep

    @staticmethod
    def is_configured() -> bool:
        return bool(os.getenv("GROQ_API_KEY") or os.getenv("GEMINI_API_KEY"))

    @track_performance("ai_generate")
    async def generate(self, prompt: str, system_prompt: str = SYSTEM_PROMPT) -> Optional[str]:
        """
        Return the raw response text, or None when every attempt came back empty.
        """
        policy = self.retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            # Provider SDKs are blocking; keep the event loop free
            result = await asyncio.to_thread(self._call, prompt, system_prompt)
            if result and result.strip():
                return result
            if attempt < policy.max_attempts:
                delay = policy.delay(attempt)
                logger.info(f"AI attempt {attempt}/{policy.max_attempts} returned nothing, retrying in {delay:.2f}s")
                await self._sleep(delay)

        logger.warning(f"AI returned no response after {policy.max_attempts} attempts")
        return None


_ai_client: Optional[AIClient] = None


def get_ai_client() -> AIClient:
    """Get the shared AI client."""
    global _ai_client
    if _ai_client is None:
        _ai_client = AIClient()
    return _ai_client
