"""
Gemini generation collaborator.

Renders an agent template with langchain_core's PromptTemplate and sends it to
one model of the pool via google-genai. Every failure leaves this module as a
ProviderError whose `kind` tells the executor whether to cool down.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

from google import genai
from google.genai import types
from langchain_core.prompts import PromptTemplate

from services.analysis.errors import FailureKind, ProviderError

logger = logging.getLogger(__name__)

QUOTA_STATUSES = {"RESOURCE_EXHAUSTED", "TOO_MANY_REQUESTS"}


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an SDK/transport exception onto a FailureKind using its structured fields."""
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return FailureKind.TIMEOUT
    code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    status = str(getattr(exc, "status", "") or "").upper()
    if code == 429 or status in QUOTA_STATUSES:
        return FailureKind.QUOTA
    return FailureKind.OTHER


def render_prompt(template: str, variables: Mapping[str, Any]) -> str:
    return PromptTemplate.from_template(template).format(**dict(variables))


class GeminiGenerationClient:
    def __init__(
        self,
        api_key: str,
        *,
        temperature: float = 0.4,
        client_factory: Optional[Callable[[], Any]] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.temperature = temperature
        self._client_factory = client_factory or (lambda: genai.Client(api_key=self.api_key))
        self._client: Any = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _sdk(self) -> Any:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def generate(self, provider_id: str, template: str, variables: Mapping[str, Any]) -> str:
        prompt = render_prompt(template, variables)
        try:
            # google-genai SDK is sync-ish; run in thread.
            text = await asyncio.to_thread(self._sync_call, provider_id, prompt)
        except ProviderError:
            raise
        except Exception as exc:
            kind = classify_failure(exc)
            logger.warning("gemini.generate_failed model=%s kind=%s error=%s", provider_id, kind.value, exc)
            raise ProviderError(provider_id, str(exc), kind=kind) from exc
        return text

    def _sync_call(self, model: str, prompt: str) -> str:
        resp = self._sdk().models.generate_content(
            model=model,
            contents=[types.Content(role="user", parts=[types.Part.from_text(text=prompt)])],
            config=types.GenerateContentConfig(temperature=self.temperature),
        )
        text = getattr(resp, "text", None)
        if not text:
            raise ProviderError(model, "empty response")
        return text
