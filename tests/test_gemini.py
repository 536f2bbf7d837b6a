from __future__ import annotations

import pytest

from conftest import FakeResponse, FakeSession, gemini_payload
from errors import LLMAPIError, LLMConfigError
from gemini import REPHRASE_MESSAGE, GeminiClient


def make_client(*responses, api_key="test-key"):
    return GeminiClient(api_key=api_key, model="gemini-test", session=FakeSession(*responses))


def test_missing_key_never_sends_a_request():
    client = GeminiClient(api_key="", model="gemini-test", session=FakeSession())

    assert client.is_configured is False
    with pytest.raises(LLMConfigError):
        client.generate("olá")
    assert client.session.calls == []


def test_generate_returns_text_and_sends_config():
    client = make_client(FakeResponse(200, gemini_payload("  Seu saldo é R$ 10  ")))

    assert client.generate("qual meu saldo?") == "Seu saldo é R$ 10"

    method, url, kwargs = client.session.calls[0]
    assert method == "POST"
    assert url.endswith("/gemini-test:generateContent")
    assert kwargs["params"] == {"key": "test-key"}
    config = kwargs["json"]["generationConfig"]
    assert config["temperature"] == 0.3
    assert "responseMimeType" not in config


def test_json_mode_parses_completion():
    client = make_client(FakeResponse(200, gemini_payload('{"type": "query"}')))

    assert client.generate("qual meu saldo?", as_json=True) == {"type": "query"}
    assert client.session.calls[0][2]["json"]["generationConfig"]["responseMimeType"] == "application/json"


def test_malformed_json_degrades_to_clarification():
    client = make_client(FakeResponse(200, gemini_payload("isto não é json")))

    assert client.generate("???", as_json=True) == {"type": "clarification", "response": REPHRASE_MESSAGE}


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_non_standard_json_constants_degrade_to_clarification(literal):
    completion = '{"type": "action", "action": "add_transaction", "amount": %s, "description": "ifood"}' % literal
    client = make_client(FakeResponse(200, gemini_payload(completion)))

    assert client.generate("gastei", as_json=True) == {"type": "clarification", "response": REPHRASE_MESSAGE}


def test_non_2xx_raises_api_error():
    client = make_client(FakeResponse(500, {"error": "boom"}, text="boom"))

    with pytest.raises(LLMAPIError):
        client.generate("oi")


def test_empty_completion_raises_api_error():
    client = make_client(FakeResponse(200, {"candidates": []}))

    with pytest.raises(LLMAPIError):
        client.generate("oi")


def test_connection_error_becomes_api_error(connection_error):
    client = make_client(connection_error)

    with pytest.raises(LLMAPIError):
        client.generate("oi")
