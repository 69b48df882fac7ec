"""Text-generation backends used by the call detector."""

import logging
from typing import Optional, Protocol

from openai import OpenAI

from calltrack.config import ConfigurationError, Settings, get_settings

logger = logging.getLogger(__name__)


class CompletionBackend(Protocol):
    def complete(self, system: str, prompt: str) -> str:
        ...


class XaiBackend:
    """Grok via xAI's OpenAI-compatible chat completions endpoint."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[OpenAI] = None):
        settings = settings or get_settings()
        if client is None:
            if not settings.xai_api_key:
                raise ConfigurationError("XAI_API_KEY not found in environment")
            client = OpenAI(
                api_key=settings.xai_api_key,
                base_url=settings.xai_base_url,
                timeout=60.0,
            )

        self._client = client
        self.model = settings.classifier_model
        self.temperature = settings.classifier_temperature
        self.max_tokens = settings.classifier_max_tokens
        logger.info(f"Initialized classifier backend with model {self.model}")

    def complete(self, system: str, prompt: str) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""
