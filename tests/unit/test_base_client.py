from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from config.settings import Settings
from macro_arena.agents.base import (
    GeminiClient,
    OllamaClient,
    OpenRouterClient,
    create_client,
    generate_structured_output,
    load_prompt,
    parse_json_from_text,
)
from macro_arena.agents.forecaster import ForecasterAgent
from macro_arena.agents.retry import is_retryable
from macro_arena.utils.exceptions import (
    AuthenticationError,
    MalformedOutputError,
    TransportError,
    UnsupportedProviderError,
)


def _mock_response(payload, status_code: int = 200) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    if status_code >= 400:
        response.raise_for_status = Mock(
            side_effect=httpx.HTTPStatusError("error", request=Mock(), response=response)
        )
    else:
        response.raise_for_status = Mock()
    return response


def _mock_client(mock_client_class, response=None, side_effect=None) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=response, side_effect=side_effect)
    mock_client.aclose = AsyncMock()
    mock_client_class.return_value = mock_client
    return mock_client


class TestParseJsonFromText:
    def test_plain_object(self):
        assert parse_json_from_text('{"prediction": 3.1}') == {"prediction": 3.1}

    def test_object_inside_prose_and_fences(self):
        text = 'Sure! Here is my answer:\n```json\n{"prediction": 3.1, "unit": "%"}\n```\nThanks.'
        assert parse_json_from_text(text) == {"prediction": 3.1, "unit": "%"}

    def test_nested_object(self):
        text = 'x {"a": {"b": [1, 2]}, "c": 3} y {"d": 4}'
        assert parse_json_from_text(text) == {"a": {"b": [1, 2]}, "c": 3}

    def test_braces_inside_strings(self):
        text = '{"rationale": "uses {braces} and \\"quotes\\" }", "confidence": 0.5}'
        assert parse_json_from_text(text) == {
            "rationale": 'uses {braces} and "quotes" }',
            "confidence": 0.5,
        }

    def test_skips_invalid_candidate(self):
        text = "Template {prediction: <number>} then {\"prediction\": 2}"
        assert parse_json_from_text(text) == {"prediction": 2}

    def test_no_object(self):
        with pytest.raises(MalformedOutputError, match="did not return a valid JSON object"):
            parse_json_from_text("I cannot answer that.", model="m")

    def test_malformed_object(self):
        with pytest.raises(MalformedOutputError, match="malformed JSON"):
            parse_json_from_text("{prediction: 3.1}", model="m")

    def test_unbalanced_object(self):
        with pytest.raises(MalformedOutputError):
            parse_json_from_text('{"prediction": 3.1', model="m")


@pytest.mark.asyncio
async def test_openrouter_generate_structured_output():
    payload = {"choices": [{"message": {"content": 'Answer: {"prediction": 4.2}'}}]}
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, _mock_response(payload))

        client = OpenRouterClient(model="openai/gpt-4o", api_key="secret")
        result = await client.generate_structured_output("Predict")

        assert result == {"prediction": 4.2}
        args, kwargs = mock_client.post.call_args
        assert args[0] == "https://openrouter.ai/api/v1/chat/completions"
        assert kwargs["json"]["model"] == "openai/gpt-4o"
        assert kwargs["json"]["messages"] == [{"role": "user", "content": "Predict"}]
        assert kwargs["headers"]["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_gemini_generate_structured_output():
    payload = {
        "candidates": [{"content": {"parts": [{"text": '{"accuracy": 0.9, '}, {"text": '"error": 1}'}]}}]
    }
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, _mock_response(payload))

        client = GeminiClient(model="gemini-2.5-flash", api_key="g-key")
        result = await client.generate_structured_output("Judge")

        assert result == {"accuracy": 0.9, "error": 1}
        args, kwargs = mock_client.post.call_args
        assert args[0].endswith("/models/gemini-2.5-flash:generateContent")
        assert kwargs["headers"]["x-goog-api-key"] == "g-key"


@pytest.mark.asyncio
async def test_gemini_invalid_key_is_authentication_error():
    payload = {"error": {"message": "API key not valid. Please pass a valid API key."}}
    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, _mock_response(payload, status_code=400))

        client = GeminiClient(model="gemini-2.5-flash", api_key="bad")
        with pytest.raises(AuthenticationError):
            await client.generate_structured_output("Judge")


@pytest.mark.asyncio
async def test_ollama_generate_structured_output():
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(
            mock_client_class, _mock_response({"response": '{"prediction": 1.5}', "eval_count": 12})
        )

        client = OllamaClient(model="mistral", base_url="http://localhost:11434/")
        result = await client.generate_structured_output("Predict")

        assert result == {"prediction": 1.5}
        args, kwargs = mock_client.post.call_args
        assert args[0] == "http://localhost:11434/api/generate"
        assert kwargs["json"]["stream"] is False


@pytest.mark.asyncio
async def test_unauthorized_maps_to_authentication_error():
    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(
            mock_client_class,
            _mock_response({"error": {"message": "No auth credentials found"}}, status_code=401),
        )

        client = OpenRouterClient(model="openai/gpt-4o", api_key="bad")
        with pytest.raises(AuthenticationError) as exc_info:
            await client.generate_structured_output("Predict")

        assert "Invalid API Key provided for OpenRouter." in exc_info.value.message
        assert "Details: No auth credentials found" in exc_info.value.message
        assert not is_retryable(exc_info.value)


@pytest.mark.asyncio
async def test_server_error_is_retryable_transport_error():
    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, _mock_response("upstream down", status_code=503))

        client = OpenRouterClient(model="openai/gpt-4o", api_key="k")
        with pytest.raises(TransportError) as exc_info:
            await client.generate_structured_output("Predict")

        assert exc_info.value.status_code == 503
        assert "503" in exc_info.value.message
        assert is_retryable(exc_info.value)


@pytest.mark.asyncio
async def test_not_found_is_attempted_once():
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(
            mock_client_class,
            _mock_response({"error": {"message": "No endpoints found"}}, status_code=404),
        )
        sleep = AsyncMock()
        agent = ForecasterAgent(
            "OpenRouter::openai/gpt-4o",
            OpenRouterClient(model="openai/gpt-4o", api_key="k"),
            template="",
            sleep=sleep,
        )

        with pytest.raises(TransportError) as exc_info:
            await agent.forecast("Predict")

        assert exc_info.value.status_code == 404
        assert "Details: No endpoints found" in exc_info.value.message
        assert mock_client.post.await_count == 1
        sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_rate_limit_message():
    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, _mock_response({}, status_code=429))

        client = OpenRouterClient(model="openai/gpt-4o", api_key="k")
        with pytest.raises(TransportError, match="Rate limit"):
            await client.generate_structured_output("Predict")


@pytest.mark.asyncio
async def test_connection_error_is_transport_error():
    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, side_effect=httpx.ConnectError("refused"))

        client = OllamaClient(model="mistral")
        with pytest.raises(TransportError, match="Failed to connect to Ollama"):
            await client.generate_structured_output("Predict")


@pytest.mark.asyncio
async def test_timeout_is_transport_error():
    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, side_effect=httpx.ReadTimeout("slow"))

        client = OllamaClient(model="mistral", timeout=5)
        with pytest.raises(TransportError, match="timed out"):
            await client.generate_structured_output("Predict")


@pytest.mark.asyncio
async def test_client_context_manager_closes():
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class)

        async with OllamaClient(model="mistral"):
            pass

        mock_client.aclose.assert_awaited_once()


class TestCreateClient:
    def test_openrouter(self):
        client = create_client("OpenRouter::openai/gpt-4o", {"OpenRouter": "k"}, Settings())
        assert isinstance(client, OpenRouterClient)
        assert client.model == "openai/gpt-4o"
        assert client.model_id == "OpenRouter::openai/gpt-4o"

    def test_gemini(self):
        client = create_client("Google Gemini::gemini-2.5-flash", {"Google Gemini": "k"}, Settings())
        assert isinstance(client, GeminiClient)

    def test_ollama_needs_no_key(self):
        client = create_client("Ollama::mistral", {}, Settings())
        assert isinstance(client, OllamaClient)
        assert client.base_url == "http://localhost:11434"

    def test_missing_key(self):
        with pytest.raises(AuthenticationError, match="API key for OpenRouter is not configured"):
            create_client("OpenRouter::openai/gpt-4o", {}, Settings())

    def test_unsupported_provider(self):
        with pytest.raises(UnsupportedProviderError, match="Unsupported provider: Acme"):
            create_client("Acme::model-1", {"Acme": "k"}, Settings())

    def test_malformed_id(self):
        with pytest.raises(ValueError):
            create_client("no-separator", {}, Settings())


@pytest.mark.asyncio
async def test_module_level_generate_structured_output():
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(
            mock_client_class, _mock_response({"response": '{"prediction": 2}'})
        )

        result = await generate_structured_output("Predict", "Ollama::mistral", {}, Settings())

        assert result == {"prediction": 2}
        mock_client.aclose.assert_awaited_once()


def test_load_default_prompts():
    forecaster = load_prompt("forecaster")
    judge = load_prompt("judge")

    assert "[PAST_FEEDBACK" in forecaster
    assert "[PAST_PERFORMANCE]" in judge


def test_load_missing_prompt():
    with pytest.raises(FileNotFoundError):
        load_prompt("does_not_exist")
