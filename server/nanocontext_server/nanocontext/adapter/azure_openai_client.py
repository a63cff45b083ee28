"""Azure OpenAI model client: implements ``ModelClient``.

The instruction prompt goes in as the system message and the text under
analysis as the user message. Failures are reported through
``ModelResponse.error``; no fallback model is attempted here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from nanocontext import config as cfg
from nanocontext.models import ModelRef, ModelResponse

logger = logging.getLogger(__name__)


class AzureOpenAIModelClient:
    """Production backend using Azure OpenAI chat completions."""

    def __init__(
        self,
        endpoint: str | None = None,
        api_key: str | None = None,
        api_version: str | None = None,
    ) -> None:
        self._endpoint = endpoint if endpoint is not None else cfg.AZURE_OPENAI_ENDPOINT
        self._api_key = api_key if api_key is not None else cfg.AZURE_OPENAI_API_KEY
        self._api_version = api_version or cfg.AZURE_OPENAI_API_VERSION
        self._client: Any | None = None
        self._init_lock = asyncio.Lock()
        self._initialized = False

    @property
    def is_configured(self) -> bool:
        return bool(self._endpoint and self._api_key)

    async def _ensure_client(self) -> None:
        """Lazily initialise the SDK client on first use."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            try:
                if self.is_configured:
                    from openai import AsyncAzureOpenAI

                    self._client = AsyncAzureOpenAI(
                        api_key=self._api_key,
                        azure_endpoint=self._endpoint,
                        api_version=self._api_version,
                    )
            except Exception:
                logger.exception("Failed to initialise Azure OpenAI client")
            self._initialized = True

    async def send_to_model(self, text: str, prompt: str, model: ModelRef) -> ModelResponse:
        start = time.monotonic()
        try:
            await self._ensure_client()
            if self._client is None:
                return ModelResponse(actual_model=model, error="Azure OpenAI credentials not configured")

            response = await self._client.chat.completions.create(
                model=model.id,
                messages=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": text},
                ],
            )
            content = response.choices[0].message.content or ""
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info("model.send model=%s chars=%d elapsed_ms=%.1f", model.id, len(text), elapsed_ms)
            return ModelResponse(result_text=content, actual_model=model)
        except Exception as exc:
            logger.exception("model.send failed for model=%s", model.id)
            return ModelResponse(actual_model=model, error=str(exc) or exc.__class__.__name__)

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.close()
            except Exception:
                logger.debug("Azure OpenAI client close failed", exc_info=True)
