# ═══════════════════════════════════════════════════════════════════════════════
# LLM CLIENT INTERFACES
# Design: A3 (ML Integration) + I1 (Systems Architect)
# Implementation: I4 (Integration)
# ═══════════════════════════════════════════════════════════════════════════════

"""
A3: "Cells think through a completion endpoint. Which one is a deployment
choice: Claude, OpenRouter, a local Ollama."

I1: "Same ABC as always: complete() and embed(). Concrete clients import their
SDKs lazily, and the mock answers in the line format our parsers read, so
the whole colony runs offline."
"""

from __future__ import annotations

import hashlib
import os
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import numpy as np


class LLMClient(ABC):
    """Abstract LLM client interface."""

    @abstractmethod
    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> str:
        """Single-turn completion: one system prompt, one user prompt."""

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Generate embedding."""


def _chat_messages(prompt: str, system_prompt: str = "") -> List[Dict[str, str]]:
    """OpenAI-style message list; Ollama and OpenRouter both take it."""
    chat = [{"role": "system", "content": system_prompt}] if system_prompt else []
    chat.append({"role": "user", "content": prompt})
    return chat


class ClaudeClient(LLMClient):
    """
    Anthropic Claude client.

    Requires: pip install anthropic
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        timeout: float = 300.0,
    ):
        try:
            from anthropic import Anthropic
        except ImportError as exc:
            raise ImportError(
                "anthropic package required: pip install anthropic"
            ) from exc

        self.client = Anthropic(api_key=api_key, timeout=timeout)
        self.model = model

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text

    def embed(self, text: str) -> np.ndarray:
        raise NotImplementedError("Claude has no embedding endpoint.")


class OpenRouterClient(LLMClient):
    """
    OpenRouter chat-completions client (OpenAI-compatible API).

    Requires: the requests package and OPENROUTER_API_KEY (or api_key).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "x-ai/grok-beta",
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 300.0,
    ):
        self.api_key = api_key or os.environ.get("OPENROUTER_API_KEY", "")
        self.model = model
        self.base_url = base_url
        self.timeout = timeout

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> str:
        import requests

        response = requests.post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "messages": _chat_messages(prompt, system_prompt),
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()["choices"][0]["message"]["content"]

    def embed(self, text: str) -> np.ndarray:
        raise NotImplementedError("OpenRouter does not serve embeddings.")


class OllamaClient(LLMClient):
    """
    Local Ollama client.

    Requires: Ollama running at base_url, plus the requests package.
    """

    def __init__(
        self,
        model: str = "llama2",
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
    ):
        self.model = model
        self.base_url = base_url
        self.timeout = timeout

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> str:
        import requests

        response = requests.post(
            f"{self.base_url}/api/chat",
            json={
                "model": self.model,
                "messages": _chat_messages(prompt, system_prompt),
                "stream": False,
                "options": {
                    "temperature": temperature,
                    "num_predict": max_tokens,
                },
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()["message"]["content"]

    def embed(self, text: str) -> np.ndarray:
        import requests

        response = requests.post(
            f"{self.base_url}/api/embeddings",
            json={"model": self.model, "prompt": text},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return np.array(response.json()["embedding"])


_MOCK_WORDS = [
    "emergent", "lattice", "signal", "pattern", "resource", "network",
    "feedback", "coherence", "boundary", "adaptation", "integration",
    "efficiency", "resilience", "structure", "flow", "synthesis",
    "gradient", "cluster", "memory", "insight",
]

_MOCK_DIMENSIONS = [
    "Emergence", "Coherence", "Resilience",
    "Intelligence", "Efficiency", "Integration",
]


class MockLLMClient(LLMClient):
    """
    Mock LLM client for running colonies without API keys.

    - complete() answers deterministically (seeded by the prompt hash) in the
      line format the model client parses: THOUGHT, RELEVANCE, TOPICS,
      SUMMARY, FOCUS and STEP lines.
    - embed() returns deterministic unit vectors from the text hash.
    - All calls are recorded for test inspection.
    """

    def __init__(self, embedding_dim: int = 64, n_steps: int = 3):
        self.embedding_dim = embedding_dim
        self.n_steps = n_steps
        self.call_log: list = []

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> str:
        self.call_log.append({
            "method": "complete",
            "prompt": prompt,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })

        rng = np.random.RandomState(_seed(prompt))

        def phrase(n: int) -> str:
            return " ".join(_MOCK_WORDS[rng.randint(len(_MOCK_WORDS))] for _ in range(n))

        word_count = max(5, min(max_tokens // 10, 24))
        topics = sorted({_MOCK_WORDS[rng.randint(len(_MOCK_WORDS))] for _ in range(3)})

        lines = [
            f"THOUGHT: {phrase(word_count)}",
            f"RELEVANCE: {rng.uniform(0.2, 0.95):.2f}",
            f"TOPICS: {', '.join(topics)}",
            f"SUMMARY: {phrase(word_count // 2)}",
            f"FOCUS: {phrase(4)}",
        ]
        for _ in range(self.n_steps):
            dimension = _MOCK_DIMENSIONS[rng.randint(len(_MOCK_DIMENSIONS))]
            lines.append(f"STEP: [{dimension}] {phrase(6)}")
        return "\n".join(lines)

    def embed(self, text: str) -> np.ndarray:
        self.call_log.append({
            "method": "embed",
            "text": text,
        })

        rng = np.random.RandomState(_seed(text))
        emb = rng.randn(self.embedding_dim)
        return emb / np.linalg.norm(emb)


def _seed(text: str) -> int:
    return int(hashlib.sha256(text.encode()).hexdigest()[:8], 16) % (2**31)
