import asyncio
import json
import time
from pathlib import Path
from typing import Any, TypeVar

import httpx
import yaml
from loguru import logger
from pydantic import BaseModel, ValidationError

from config.settings import Settings, get_settings
from macro_arena.models import ForecasterId
from macro_arena.utils.exceptions import (
    AuthenticationError,
    InvocationError,
    MalformedOutputError,
    TransportError,
    UnsupportedProviderError,
)

_STATUS_MESSAGES = {
    401: "Invalid API Key provided for {provider}.",
    402: "Not enough credits. Please check your {provider} account balance.",
    403: "Model '{model}' is not available. Check your {provider} settings or model access permissions.",
    429: "Rate limit hit for this model. Please retry shortly or check your {provider} account limits.",
}

_AUTH_STATUSES = {401, 402, 403}


def parse_json_from_text(text: str, model: str = "") -> Any:
    """
    Extract the first balanced ``{...}`` object from free-form model text.

    Candidates are tried left to right; braces inside JSON string literals
    are ignored while balancing.

    Raises:
        MalformedOutputError: If no candidate parses as JSON
    """
    found_candidate = False
    start = text.find("{")

    while start != -1:
        end = _match_brace(text, start)
        if end == -1:
            break

        found_candidate = True
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            start = text.find("{", start + 1)

    if found_candidate:
        logger.debug(f"Malformed JSON from {model}: {text[:200]!r}")
        raise MalformedOutputError("Model returned malformed JSON.", model=model, raw_text=text)
    raise MalformedOutputError(
        "LLM did not return a valid JSON object.", model=model, raw_text=text
    )


def _match_brace(text: str, start: int) -> int:
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index

    return -1


class LLMClient:
    """Single "prompt in, structured JSON out" contract over one model backend."""

    provider = ""

    def __init__(self, model: str, timeout: float = 120) -> None:
        self.model = model
        self.timeout = timeout
        self.client = httpx.AsyncClient(timeout=timeout)

        logger.info(f"{type(self).__name__} initialized with model {model}")

    @property
    def model_id(self) -> str:
        return str(ForecasterId(provider=self.provider, model=self.model))

    async def complete(self, prompt: str) -> str:
        raise NotImplementedError

    async def generate_structured_output(self, prompt: str) -> Any:
        start_time = time.time()
        logger.debug(f"Generating with {self.model_id}: {len(prompt)} chars prompt")

        text = await self.complete(prompt)

        logger.debug(f"{self.model_id} responded in {time.time() - start_time:.2f}s")
        return parse_json_from_text(text, model=self.model)

    async def _post(self, url: str, payload: dict[str, Any], **kwargs: Any) -> Any:
        try:
            response = await self.client.post(url, json=payload, **kwargs)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response)
        except httpx.TimeoutException as e:
            logger.error(f"{self.provider} timeout: {e}")
            raise TransportError(
                f"Request to {self.provider} timed out after {self.timeout}s",
                model=self.model,
            )
        except httpx.RequestError as e:
            logger.error(f"{self.provider} connection error: {e}")
            raise TransportError(
                f"Failed to connect to {self.provider}: {e}",
                model=self.model,
            )
        except ValueError as e:
            raise TransportError(
                f"{self.provider} returned a non-JSON response: {e}",
                model=self.model,
            )

    def _status_error(self, response: httpx.Response) -> InvocationError:
        status = response.status_code
        template = _STATUS_MESSAGES.get(
            status,
            "Model call failed. The provider returned status: {status}. "
            "The model may be temporarily unavailable.",
        )
        message = template.format(provider=self.provider, model=self.model, status=status)

        detail = _error_detail(response)
        if detail:
            message = f"{message} Details: {detail}"

        logger.error(f"{self.provider} HTTP error {status} for {self.model}")

        if status in _AUTH_STATUSES:
            return AuthenticationError(message, model=self.model)
        return TransportError(message, model=self.model, status_code=status)

    async def close(self) -> None:
        await self.client.aclose()
        logger.debug(f"{type(self).__name__} closed")

    async def __aenter__(self) -> "LLMClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if not isinstance(payload, dict):
        return ""
    error = payload.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or "")
    if isinstance(error, str):
        return error
    return ""


class OpenRouterClient(LLMClient):
    provider = "OpenRouter"

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 120,
    ) -> None:
        super().__init__(model=model, timeout=timeout)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def complete(self, prompt: str) -> str:
        data = await self._post(
            f"{self.base_url}/chat/completions",
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""


class GeminiClient(LLMClient):
    provider = "Google Gemini"

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120,
    ) -> None:
        super().__init__(model=model, timeout=timeout)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def complete(self, prompt: str) -> str:
        data = await self._post(
            f"{self.base_url}/models/{self.model}:generateContent",
            {"contents": [{"parts": [{"text": prompt}]}]},
            headers={"x-goog-api-key": self.api_key},
        )

        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def _status_error(self, response: httpx.Response) -> InvocationError:
        # Gemini rejects bad keys with a 400
        if response.status_code == 400 and "API key not valid" in response.text:
            return AuthenticationError(
                "Invalid API Key. Please check your Google Gemini key.",
                model=self.model,
            )
        return super()._status_error(response)


class OllamaClient(LLMClient):
    provider = "Ollama"

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        timeout: float = 120,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> None:
        super().__init__(model=model, timeout=timeout)
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def complete(self, prompt: str) -> str:
        data = await self._post(
            f"{self.base_url}/api/generate",
            {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": {
                    "temperature": self.temperature,
                    "num_predict": self.max_tokens,
                },
            },
        )

        eval_count = data.get("eval_count", 0)
        logger.debug(f"Ollama generation complete: {eval_count} tokens")

        return data.get("response", "")


# Providers that run locally and take no API key
KEYLESS_PROVIDERS = {OllamaClient.provider}

PROVIDERS: dict[str, type[LLMClient]] = {
    OpenRouterClient.provider: OpenRouterClient,
    GeminiClient.provider: GeminiClient,
    OllamaClient.provider: OllamaClient,
}


def create_client(
    model_id: str,
    credentials: dict[str, str],
    settings: Settings | None = None,
) -> LLMClient:
    """
    Resolve a ``provider::model`` id to a ready client.

    Args:
        model_id: Compound forecaster or judge id
        credentials: Provider name -> API key
        settings: Settings supplying base URLs and timeouts

    Returns:
        Provider-specific LLMClient

    Raises:
        UnsupportedProviderError: Unknown provider segment
        AuthenticationError: No API key configured for the provider
    """
    settings = settings or get_settings()
    forecaster_id = ForecasterId.parse(model_id)
    provider = forecaster_id.provider
    llm = settings.llm

    if provider not in PROVIDERS:
        raise UnsupportedProviderError(provider, model=forecaster_id.model)

    if provider in KEYLESS_PROVIDERS:
        return OllamaClient(
            model=forecaster_id.model,
            base_url=llm.ollama_base_url,
            timeout=llm.timeout,
            temperature=llm.temperature,
            max_tokens=llm.max_tokens,
        )

    api_key = credentials.get(provider)
    if not api_key:
        raise AuthenticationError(
            f"API key for {provider} is not configured.", model=forecaster_id.model
        )

    if provider == GeminiClient.provider:
        return GeminiClient(
            model=forecaster_id.model,
            api_key=api_key,
            base_url=llm.gemini_base_url,
            timeout=llm.timeout,
        )

    return OpenRouterClient(
        model=forecaster_id.model,
        api_key=api_key,
        base_url=llm.openrouter_base_url,
        timeout=llm.timeout,
    )


async def generate_structured_output(
    prompt: str,
    model_id: str,
    credentials: dict[str, str],
    settings: Settings | None = None,
) -> Any:
    """One-shot invocation: resolve a client, call it once, close it."""
    async with create_client(model_id, credentials, settings) as client:
        return await client.generate_structured_output(prompt)


def load_prompt(name: str) -> str:
    prompts_dir = Path(__file__).parent.parent.parent / "config" / "prompts"
    prompt_file = prompts_dir / f"{name}.yaml"

    if not prompt_file.exists():
        logger.error(f"Prompt file not found: {prompt_file}")
        raise FileNotFoundError(f"Prompt file not found: {prompt_file}")

    with open(prompt_file, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    template = data.get("template", "")

    if not template:
        logger.warning(f"Empty prompt template in {prompt_file}")

    logger.debug(f"Loaded prompt template {name}: {len(template)} chars")
    return template


M = TypeVar("M", bound=BaseModel)


async def invoke_with_timeout(client: Any, prompt: str, timeout: float | None = None) -> Any:
    """Call ``client.generate_structured_output`` bounded by ``timeout`` seconds."""
    model = getattr(client, "model", "")
    if timeout is None:
        return await client.generate_structured_output(prompt)
    try:
        return await asyncio.wait_for(client.generate_structured_output(prompt), timeout)
    except asyncio.TimeoutError:
        raise TransportError(f"Model call timed out after {timeout}s", model=model)


def validate_output(schema: type[M], payload: Any, model: str) -> M:
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"]) or "root"
        raise MalformedOutputError(
            f"Model output does not match the {schema.__name__} schema (invalid: {fields}).",
            model=model,
            raw_text=json.dumps(payload, default=str),
        )
