"""Tests for the LLM completion backends."""

import numpy as np
import pytest

from eca.core.llm_clients import LLMClient, MockLLMClient, OllamaClient, OpenRouterClient


# ── MockLLMClient Tests ──────────────────────────────────────────────────────


def test_mock_client_complete():
    """MockLLMClient.complete should return a non-empty string."""
    client = MockLLMClient()
    response = client.complete("Hello, how are you?")
    assert isinstance(response, str)
    assert len(response) > 0


def test_mock_client_complete_deterministic():
    """Same prompt should give same response."""
    client = MockLLMClient()
    assert client.complete("test prompt") == client.complete("test prompt")


def test_mock_client_complete_varies_by_prompt():
    """Different prompts should give different responses."""
    client = MockLLMClient()
    assert client.complete("first prompt") != client.complete("completely different prompt")


def test_mock_client_line_format():
    """Responses carry every labelled line the parsers read."""
    client = MockLLMClient(n_steps=2)
    lines = client.complete("anything").splitlines()
    labels = [line.split(":", 1)[0] for line in lines]
    assert labels == ["THOUGHT", "RELEVANCE", "TOPICS", "SUMMARY", "FOCUS", "STEP", "STEP"]
    assert 0.0 <= float(lines[1].split(":")[1]) <= 1.0


def test_mock_client_embed():
    """MockLLMClient.embed should return a unit vector."""
    client = MockLLMClient()
    emb = client.embed("test text")
    assert emb.shape == (64,)
    assert abs(np.linalg.norm(emb) - 1.0) < 1e-6


def test_mock_client_embed_deterministic():
    """Same text should give same embedding."""
    client = MockLLMClient()
    assert np.allclose(client.embed("hello"), client.embed("hello"))
    assert not np.allclose(client.embed("hello world"), client.embed("goodbye moon"))


def test_mock_client_call_log():
    """MockLLMClient should log all calls."""
    client = MockLLMClient()
    client.complete("prompt 1")
    client.embed("text 1")
    client.complete("prompt 2", system_prompt="sys")

    assert [c["method"] for c in client.call_log] == ["complete", "embed", "complete"]
    assert client.call_log[2]["system_prompt"] == "sys"


def test_llm_client_abc():
    """LLMClient should be abstract."""
    with pytest.raises(TypeError):
        LLMClient()


# ── HTTP Backends ────────────────────────────────────────────────────────────


class _FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


def test_openrouter_request_shape(monkeypatch):
    """OpenRouter posts chat messages and reads choices[0].message.content."""
    requests = pytest.importorskip("requests")
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(url=url, headers=headers, json=json, timeout=timeout)
        return _FakeResponse({"choices": [{"message": {"content": "THOUGHT: hi"}}]})

    monkeypatch.setattr(requests, "post", fake_post)
    client = OpenRouterClient(api_key="k", timeout=7.0)
    text = client.complete("prompt", system_prompt="sys", max_tokens=50)

    assert text == "THOUGHT: hi"
    assert captured["url"].endswith("/chat/completions")
    assert captured["headers"]["Authorization"] == "Bearer k"
    assert captured["json"]["model"] == "x-ai/grok-beta"
    assert captured["json"]["messages"][0] == {"role": "system", "content": "sys"}
    assert captured["json"]["messages"][-1] == {"role": "user", "content": "prompt"}
    assert captured["timeout"] == 7.0


def test_openrouter_has_no_embeddings():
    """OpenRouter embed() is not available."""
    with pytest.raises(NotImplementedError):
        OpenRouterClient(api_key="k").embed("x")


def test_ollama_request_shape(monkeypatch):
    """Ollama posts to /api/chat without streaming."""
    requests = pytest.importorskip("requests")
    captured = {}

    def fake_post(url, json=None, timeout=None):
        captured.update(url=url, json=json)
        return _FakeResponse({"message": {"content": "ok"}})

    monkeypatch.setattr(requests, "post", fake_post)
    assert OllamaClient(model="m").complete("p") == "ok"
    assert captured["url"].endswith("/api/chat")
    assert captured["json"]["stream"] is False
