"""Language-model providers for structured meeting extraction.

Backends:
  - Anthropic: Messages API through the anthropic SDK with a single forced
    tool, so the reply is always the tool's input object.
  - LM Studio: local OpenAI-compatible chat completions over requests. The
    tool schema is folded into the system prompt and JSON is recovered from
    free text.

Both are synchronous clients. The Analyst runs them off the event loop.
Failures raise LLMProviderError; no retries happen here, the next analysis
cycle is the retry.
"""

import json
import logging
from typing import Any

import anthropic
import requests

from copilot.core.config import CopilotConfig, LLMProvider, LLMProviderError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_S = 120


def _extract_json(raw: str) -> dict[str, Any]:
    """Pull the first JSON object out of model output.

    Handles markdown fences and prose before or after the object. Anything
    unparseable comes back as {} and the parser fills in defaults.
    """
    if not raw or not raw.strip():
        return {}

    text = raw.strip()
    if "```" in text:
        fenced = text.split("```", 2)[1]
        text = fenced[4:] if fenced.startswith("json") else fenced
        text = text.strip()

    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else {}
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            parsed, _ = decoder.raw_decode(text, start)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
        start = text.find("{", start + 1)

    logger.warning(f"JSON extraction failed: {raw[:300]}")
    return {}


# ══════════════════════════════════════════════════════════════════════
# Anthropic Messages API (primary)
# ══════════════════════════════════════════════════════════════════════

class AnthropicProvider:
    """Calls the Anthropic Messages API with forced tool use."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "claude-sonnet-4-20250514",
        client: anthropic.Anthropic | None = None,
    ):
        self._api_key = api_key
        self._model = model
        self._client = client

    @property
    def is_ready(self) -> bool:
        return bool(self._api_key) or self._client is not None

    @property
    def model_id(self) -> str:
        return f"anthropic:{self._model}"

    def _get_client(self) -> anthropic.Anthropic:
        if self._client is None:
            if not self._api_key:
                raise LLMProviderError("ANTHROPIC_API_KEY not configured")
            self._client = anthropic.Anthropic(
                api_key=self._api_key,
                timeout=REQUEST_TIMEOUT_S,
                max_retries=0,
            )
        return self._client

    def generate_structured(
        self,
        messages: list[dict[str, str]],
        system_prompt: str,
        tool: dict[str, Any],
        max_tokens: int = 2000,
    ) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                system=system_prompt,
                tools=[tool],
                tool_choice={"type": "tool", "name": tool["name"]},
                messages=messages,
            )
        except anthropic.APIConnectionError as e:
            raise LLMProviderError(f"Network error: {e}") from e
        except anthropic.RateLimitError as e:
            raise LLMProviderError(f"Rate limit exceeded: {e}") from e
        except anthropic.APIStatusError as e:
            raise LLMProviderError(f"API error ({e.status_code}): {e.message}") from e

        for block in response.content:
            if block.type == "tool_use":
                return block.input if isinstance(block.input, dict) else {}
        raise LLMProviderError("No tool use response from Anthropic")


# ══════════════════════════════════════════════════════════════════════
# LM Studio API (local fallback)
# ══════════════════════════════════════════════════════════════════════

class LMStudioProvider:
    """Calls LM Studio's OpenAI-compatible API and recovers JSON from the reply.

    API: http://localhost:1234/v1/chat/completions
    """

    def __init__(self, api_url: str = "http://localhost:1234/v1/chat/completions"):
        self._api_url = api_url
        self._model_name: str | None = None  # Auto-detected from LM Studio

    def _models_url(self) -> str:
        return self._api_url.replace("/chat/completions", "/models")

    def _get_model_name(self) -> str:
        """Auto-detect the loaded model name from LM Studio."""
        if self._model_name:
            return self._model_name
        try:
            resp = requests.get(self._models_url(), timeout=5)
            if resp.status_code == 200:
                data = resp.json()
                if data.get("data"):
                    self._model_name = data["data"][0]["id"]
                    return self._model_name
        except (requests.RequestException, ValueError, KeyError) as exc:
            logger.debug(f"LM Studio model detection failed: {exc}")
        return "local-model"

    @property
    def is_ready(self) -> bool:
        try:
            return requests.get(self._models_url(), timeout=3).status_code == 200
        except requests.RequestException:
            return False

    @property
    def model_id(self) -> str:
        return f"lmstudio:{self._get_model_name()}"

    def generate_structured(
        self,
        messages: list[dict[str, str]],
        system_prompt: str,
        tool: dict[str, Any],
        max_tokens: int = 2000,
    ) -> dict[str, Any]:
        schema = json.dumps(tool.get("input_schema", {}), ensure_ascii=False)
        system = (
            f"{system_prompt}\n\n"
            f"Respond with ONLY a JSON object matching this schema, no markdown fences:\n{schema}"
        )
        try:
            resp = requests.post(
                self._api_url,
                json={
                    "model": self._get_model_name(),
                    "messages": [{"role": "system", "content": system}, *messages],
                    "max_tokens": max_tokens,
                    "temperature": 0.3,
                    "top_p": 0.9,
                },
                timeout=REQUEST_TIMEOUT_S,
            )
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"]
        except requests.RequestException as exc:
            raise LLMProviderError(f"LM Studio request failed: {exc}") from exc
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMProviderError(f"LM Studio returned an unexpected body: {exc}") from exc

        return _extract_json(content or "")


def get_provider(config: CopilotConfig) -> LLMProvider:
    """Factory — returns the configured provider."""
    if config.llm_backend == "lmstudio":
        logger.info(f"LLM backend: LM Studio ({config.lm_studio_url})")
        return LMStudioProvider(config.lm_studio_url)

    if not config.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY not set - analysis cycles will fail until configured")
    logger.info(f"LLM backend: Anthropic ({config.anthropic_model})")
    return AnthropicProvider(config.anthropic_api_key, config.anthropic_model)
