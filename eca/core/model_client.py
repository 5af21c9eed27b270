# ═══════════════════════════════════════════════════════════════════════════════
# PART 6: EXTERNAL MODEL CONTRACT
# Design: A3 (ML Integration) + S2 (Distributed Systems)
# Implementation: I4 (Integration)
# ═══════════════════════════════════════════════════════════════════════════════

"""
S2: "The model is remote, slow, and sometimes wrong. The colony needs four
things from it and nothing else: a thought, a plan, a summary, a reading of
the context. Plain records in, plain records out."

A3: "Prompts ask for labelled lines. Parsing is lenient where it can be
(missing relevance means 0.5) and strict where it must be (no content means
the call failed)."
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from eca.core.llm_clients import LLMClient
from eca.core.memory import Thought, make_thought_id, now_iso
from eca.core.plans import PlanDraft, PlanSynthesisFailure, StepDraft
from eca.core.thought_dna import Dimension

logger = logging.getLogger(__name__)


# ── Exceptions ───────────────────────────────────────────────────────────────


class ExternalCallError(Exception):
    """Base class for failed external model calls."""
    pass


class ExternalCallTimeout(ExternalCallError):
    """The call did not answer within its timeout."""
    pass


class ExternalCallFailure(ExternalCallError):
    """The call answered with something unusable, or raised."""
    pass


# ── Request / Response Records ───────────────────────────────────────────────


@dataclass
class ThoughtContext:
    """Everything a thought request may carry. Optional fields default empty."""
    mission: str
    cycle: int
    position: Tuple[int, ...]
    dna: Dict[str, float]
    colony_name: str = ""
    current_focus: str = "Exploring new opportunities"
    recent_thoughts: List[str] = field(default_factory=list)
    plan_steps: List[str] = field(default_factory=list)
    context_summary: Optional[str] = None
    context_focus: Optional[str] = None
    context_topics: List[str] = field(default_factory=list)
    knowledge: Optional[str] = None


@dataclass
class ContextSignal:
    """Colony-level signal summarised once per context interval."""
    mission: str
    cycle: int
    cell_count: int
    mean_dna: Dict[str, float]
    recent_thoughts: List[str] = field(default_factory=list)
    degraded_last_cycle: int = 0


@dataclass
class ContextSummary:
    summary: str
    focus: str = ""
    topics: List[str] = field(default_factory=list)


# ── Contract ─────────────────────────────────────────────────────────────────


class ExternalModelClient(ABC):
    """
    The four model-backed operations the colony needs.

    Implementations raise ExternalCallError subclasses on failure. Timeouts
    are enforced by the caller.
    """

    @abstractmethod
    def generate_thought(self, context: ThoughtContext) -> Thought:
        """New thought for the cell described by `context`."""

    @abstractmethod
    def synthesize_plan(self, thoughts: List[Thought]) -> PlanDraft:
        """Plan draft from a window of thoughts.

        Raises PlanSynthesisFailure when the answer holds no steps.
        """

    @abstractmethod
    def compress_memory(self, thoughts: List[Thought]) -> Thought:
        """One summary thought standing in for `thoughts` (oldest first)."""

    @abstractmethod
    def analyze_context(self, signal: ContextSignal) -> ContextSummary:
        """Digest of the colony-wide signal."""

    def compress_knowledge(self, documents: str) -> str:
        """
        Condense knowledge-base documents once at startup.

        Optional; clients without it run the colony without a knowledge base.
        """
        raise ExternalCallFailure(f"{type(self).__name__} does not compress knowledge")


# ── Response Parsing ─────────────────────────────────────────────────────────

_FIELD_RE = re.compile(r"^\s*(?:[-*]\s*)?([A-Z][A-Z_ ]*[A-Z])\s*:\s*(.*)$")
_STEP_TAG_RE = re.compile(r"^\[\s*([A-Za-z_]+)\s*\]\s*(.*)$")
_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s+(.+)$")


def parse_fields(text: str) -> Dict[str, List[str]]:
    """Collect `LABEL: value` lines; repeated labels keep every value."""
    fields: Dict[str, List[str]] = {}
    for line in text.splitlines():
        match = _FIELD_RE.match(line)
        if match:
            label = match.group(1).strip().upper()
            fields.setdefault(label, []).append(match.group(2).strip())
    return fields


def parse_relevance(values: Optional[List[str]], default: float = 0.5) -> float:
    if not values:
        return default
    try:
        value = float(values[0].split()[0])
    except (ValueError, IndexError):
        return default
    if not np.isfinite(value):
        return default
    # Accept percentages
    if value > 1.0:
        value = value / 100.0
    return float(np.clip(value, 0.0, 1.0))


def parse_topics(values: Optional[List[str]], limit: int = 5) -> List[str]:
    if not values:
        return []
    topics: List[str] = []
    for part in values[0].split(","):
        topic = part.strip().strip(".").lower()
        if topic and topic not in topics:
            topics.append(topic)
    return topics[:limit]


def parse_steps(text: str, fields: Dict[str, List[str]]) -> List[StepDraft]:
    steps: List[StepDraft] = []
    for raw in fields.get("STEP", []):
        match = _STEP_TAG_RE.match(raw)
        dimension = None
        description = raw
        if match:
            dimension = _dimension_named(match.group(1))
            description = match.group(2).strip()
        if description:
            steps.append(StepDraft(description=description, dimension=dimension))

    if not steps:
        for line in text.splitlines():
            match = _NUMBERED_RE.match(line)
            if match:
                steps.append(StepDraft(description=match.group(1).strip()))
    return steps


def _dimension_named(name: str) -> Optional[Dimension]:
    try:
        return Dimension(name.strip().lower())
    except ValueError:
        return None


# ── LLM-backed Implementation ────────────────────────────────────────────────


class LLMModelClient(ExternalModelClient):
    """
    ExternalModelClient over any LLMClient completion backend.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        embed_thoughts: bool = False,
    ):
        self.llm_client = llm_client
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.embedder: Optional[Callable[[str], np.ndarray]] = (
            self._find_embedder(llm_client) if embed_thoughts else None
        )

    @staticmethod
    def _find_embedder(llm_client: LLMClient) -> Optional[Callable[[str], np.ndarray]]:
        """
        Test if llm_client.embed works. If it raises NotImplementedError,
        thoughts are stored without embeddings.
        """
        try:
            llm_client.embed("test")
            return llm_client.embed
        except NotImplementedError:
            return None

    # ── Contract ─────────────────────────────────────────────────────────

    def generate_thought(self, context: ThoughtContext) -> Thought:
        text = self._complete(self.build_thought_prompt(context), self._system_prompt(context))
        fields = parse_fields(text)
        content = " ".join(fields.get("THOUGHT", [])).strip()
        if not content and not fields:
            content = text.strip()
        if not content:
            raise ExternalCallFailure("model returned no thought content")

        embedding = None
        if self.embedder is not None:
            embedding = tuple(float(x) for x in self.embedder(content))

        return Thought(
            id=make_thought_id(context.position, context.cycle, content),
            content=content,
            cycle=context.cycle,
            relevance=parse_relevance(fields.get("RELEVANCE")),
            created_at=now_iso(),
            embedding=embedding,
            topics=tuple(parse_topics(fields.get("TOPICS"))),
        )

    def synthesize_plan(self, thoughts: List[Thought]) -> PlanDraft:
        if not thoughts:
            raise PlanSynthesisFailure("empty thought window")
        text = self._complete(self.build_plan_prompt(thoughts))
        fields = parse_fields(text)
        steps = parse_steps(text, fields)
        if not steps:
            raise PlanSynthesisFailure("model response held no plan steps")
        summary = " ".join(fields.get("SUMMARY", [])).strip()
        return PlanDraft(summary=summary, steps=steps)

    def compress_memory(self, thoughts: List[Thought]) -> Thought:
        if not thoughts:
            raise ExternalCallFailure("nothing to compress")
        text = self._complete(self.build_compression_prompt(thoughts))
        fields = parse_fields(text)
        summary = " ".join(fields.get("SUMMARY", [])).strip()
        if not summary and not fields:
            summary = text.strip()
        if not summary:
            raise ExternalCallFailure("model returned no summary")

        return Thought(
            id="pending",
            content=summary,
            cycle=min(t.cycle for t in thoughts),
            cycle_end=max(t.last_cycle for t in thoughts),
            relevance=sum(t.relevance for t in thoughts) / len(thoughts),
            created_at=max(t.created_at for t in thoughts),
            topics=tuple(parse_topics(fields.get("TOPICS"))),
            compressed=True,
        )

    def analyze_context(self, signal: ContextSignal) -> ContextSummary:
        text = self._complete(self.build_context_prompt(signal))
        fields = parse_fields(text)
        summary = " ".join(fields.get("SUMMARY", [])).strip()
        if not summary:
            raise ExternalCallFailure("model returned no context summary")
        return ContextSummary(
            summary=summary,
            focus=" ".join(fields.get("FOCUS", [])).strip(),
            topics=parse_topics(fields.get("TOPICS")),
        )

    def compress_knowledge(self, documents: str) -> str:
        if not documents.strip():
            raise ExternalCallFailure("no knowledge documents")
        text = self._complete(self.build_knowledge_prompt(documents))
        fields = parse_fields(text)
        knowledge = "\n".join(fields.get("KNOWLEDGE") or fields.get("SUMMARY", [])).strip()
        if not knowledge and not fields:
            knowledge = text.strip()
        if not knowledge:
            raise ExternalCallFailure("model returned no knowledge summary")
        return knowledge

    # ── Prompts ──────────────────────────────────────────────────────────

    def build_thought_prompt(self, context: ThoughtContext) -> str:
        parts: List[str] = [f"Cycle {context.cycle}. Current focus: {context.current_focus}"]

        parts.append("\n[Thought DNA]")
        for name, value in context.dna.items():
            parts.append(f"- {name}: {value:.1f}")

        if context.plan_steps:
            parts.append("\n[Active Plan]")
            parts.extend(f"- {s}" for s in context.plan_steps)

        if context.recent_thoughts:
            parts.append("\n[Recent Thoughts]")
            parts.extend(f"- {t[:200]}" for t in context.recent_thoughts)

        if context.context_summary:
            parts.append("\n[Colony Context]")
            parts.append(context.context_summary)
            if context.context_focus:
                parts.append(f"Focus: {context.context_focus}")
            if context.context_topics:
                parts.append(f"Topics: {', '.join(context.context_topics)}")

        if context.knowledge:
            parts.append("\n[Knowledge Base Context]")
            parts.append(context.knowledge)

        parts.append(
            "\nProduce one new thought that advances the mission.\n"
            "Required Format:\n"
            "THOUGHT: <one paragraph>\n"
            "RELEVANCE: <0.0-1.0>\n"
            "TOPICS: <comma separated>"
        )
        return "\n".join(parts)

    def build_plan_prompt(self, thoughts: List[Thought]) -> str:
        signals = "\n".join(f"- ({t.relevance:.2f}) {t.content[:300]}" for t in thoughts)
        dimensions = ", ".join(d.value.capitalize() for d in Dimension)
        return (
            "CONTEXT SIGNALS:\n"
            f"{signals}\n\n"
            "Turn these signals into a short executable plan. Tag each step with "
            f"the dimension it should raise ({dimensions}).\n"
            "Required Format:\n"
            "SUMMARY: <plan overview>\n"
            "STEP: [<Dimension>] <action>\n"
            "STEP: [<Dimension>] <action>"
        )

    def build_compression_prompt(self, thoughts: List[Thought]) -> str:
        content = "\n".join(
            f"- [cycles {t.cycle}-{t.last_cycle}] ({t.relevance:.2f}) {t.content}"
            for t in thoughts
        )
        return (
            "CONTENT:\n"
            f"{content}\n\n"
            "Compress these memories. Keep recurring themes, key insights and "
            "how relevance evolved. Be brief.\n"
            "Required Format:\n"
            "SUMMARY: <compressed memory>\n"
            "TOPICS: <comma separated dominant topics>"
        )

    def build_knowledge_prompt(self, documents: str) -> str:
        return (
            "DOCUMENTS:\n"
            f"{documents}\n\n"
            "Condense these documents into the facts, principles and methods a "
            "colony of thinking cells should keep in mind. Drop repetition and "
            "formatting.\n"
            "Required Format:\n"
            "KNOWLEDGE: <condensed knowledge>"
        )

    def build_context_prompt(self, signal: ContextSignal) -> str:
        dna = ", ".join(f"{k}={v:.1f}" for k, v in signal.mean_dna.items())
        recent = "\n".join(f"- {t[:200]}" for t in signal.recent_thoughts)
        return (
            f"Mission: {signal.mission}\n"
            f"Cycle {signal.cycle}, {signal.cell_count} cells, "
            f"{signal.degraded_last_cycle} degraded last cycle.\n"
            f"Mean Thought DNA: {dna}\n"
            f"Recent thoughts:\n{recent or '- none'}\n\n"
            "Summarise the situation the colony is in.\n"
            "Required Format:\n"
            "SUMMARY: <situation>\n"
            "FOCUS: <what cells should attend to>\n"
            "TOPICS: <comma separated>"
        )

    # ── Internal ─────────────────────────────────────────────────────────

    def _system_prompt(self, context: ThoughtContext) -> str:
        name = f" of colony '{context.colony_name}'" if context.colony_name else ""
        return (
            f"You are cell {list(context.position)}{name}. "
            f"Colony mission: {context.mission}"
        )

    def _complete(self, prompt: str, system_prompt: str = "") -> str:
        try:
            text = self.llm_client.complete(
                prompt=prompt,
                system_prompt=system_prompt,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except ExternalCallError:
            raise
        except Exception as exc:
            raise ExternalCallFailure(f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(text, str) or not text.strip():
            raise ExternalCallFailure("empty completion")
        return text


def describe_error(exc: BaseException) -> str:
    """Short label for logs and plan ticks."""
    kind: Any = type(exc).__name__
    message = str(exc)
    return f"{kind}: {message}" if message else kind
