"""Tests for the bounded thought memory."""

import pytest

from eca.core.memory import (
    MemoryCompressionFailure,
    MemoryConfig,
    MemoryStore,
    Thought,
    make_thought_id,
    trim_to_bytes,
)


def _thought(n: int, size: int = 40, relevance: float = 0.5, topics=()) -> Thought:
    return Thought(
        id=f"t{n}",
        content="x" * size,
        cycle=n,
        relevance=relevance,
        created_at=f"2026-01-01T00:00:{n:02d}",
        topics=tuple(topics),
    )


def _summarizer(text: str = "summary", topics=("gist",)):
    calls = []

    def compress(run):
        calls.append([t.id for t in run])
        return Thought(
            id="pending", content=text, cycle=0, relevance=0.0,
            created_at="", topics=tuple(topics),
        )

    compress.calls = calls
    return compress


def _failing(run):
    raise MemoryCompressionFailure("model down")


# ── Budget ──────────────────────────────────────────────────────────────────


def test_three_forties_over_hundred_compress():
    """40 + 40 + 40 into a 100-byte store triggers compression and fits."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    compress = _summarizer("sum")
    store.add(_thought(1), compressor=compress)
    store.add(_thought(2), compressor=compress)
    assert compress.calls == []

    events = store.add(_thought(3), compressor=compress)

    assert store.total_size <= 100
    assert compress.calls == [["t1"]]
    assert events[-1].kind == "compressed"
    assert store.ids()[0] == "t3"
    assert store.thoughts[-1].compressed
    assert events[-1].summary == store.thoughts[-1]


def test_three_forties_with_failing_compressor_truncate():
    """Compression failure falls back to dropping the oldest."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    for n in (1, 2):
        store.add(_thought(n), compressor=_failing)
    events = store.add(_thought(3), compressor=_failing)

    assert store.total_size == 80
    assert store.ids() == ["t3", "t2"]
    assert events[-1].kind == "degraded"
    assert store.degraded_count == 1
    assert events[-1].summary is None


def test_no_compressor_truncates():
    """Without a compressor the store simply drops the oldest run."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    for n in range(1, 6):
        store.add(_thought(n))
        assert store.total_size <= 100
    assert store.ids() == ["t5", "t4"]


def test_budget_holds_for_any_sequence():
    """total_size <= max_bytes after every add, whatever the mix."""
    store = MemoryStore(MemoryConfig(max_bytes=150))
    compressors = [_summarizer("s" * 30), _failing, None, _summarizer("")]
    for n in range(60):
        size = (n * 37) % 90 + 1
        store.add(_thought(n, size=size), compressor=compressors[n % 4])
        assert store.total_size <= 150
        assert store.total_size == sum(t.size for t in store.thoughts)


def test_oversized_thought_is_trimmed():
    """A single thought larger than the budget is cut to fit."""
    store = MemoryStore(MemoryConfig(max_bytes=50))
    store.add(_thought(1, size=10))
    events = store.add(_thought(2, size=500))

    assert store.total_size <= 50
    assert store.ids() == ["t2"]
    assert events[0].kind == "trimmed"


# ── Summaries ──────────────────────────────────────────────────────────────


def test_summary_preserves_range_relevance_and_lineage():
    """The summary covers the run's cycles, mean relevance and ids."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    store.add(_thought(1, relevance=0.2, topics=("a", "b")))
    store.add(_thought(2, relevance=0.8, topics=("a",)))
    store.add(_thought(3, size=61), compressor=_summarizer("s", topics=()))

    summary = store.thoughts[-1]
    assert summary.compressed
    assert summary.cycle == 1
    assert summary.last_cycle == 2
    assert summary.relevance == pytest.approx(0.5)
    assert summary.lineage == ("t1", "t2")
    assert summary.topics[0] == "a"
    assert summary.created_at == "2026-01-01T00:00:02"


def test_summary_never_grows_the_store():
    """A verbose summary is trimmed to the bytes its run freed."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    store.add(_thought(1))
    store.add(_thought(2))
    store.add(_thought(3), compressor=_summarizer("y" * 500))

    assert store.total_size <= 100


def test_compressed_summary_is_oldest():
    """The summary sits behind every newer thought."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    for n in range(1, 8):
        store.add(_thought(n, size=30), compressor=_summarizer("s"))
    summary_positions = [i for i, t in enumerate(store.thoughts) if t.compressed]
    assert summary_positions == [len(store) - 1]
    newer = store.thoughts[:-1]
    assert all(t.cycle > store.thoughts[-1].last_cycle for t in newer)


def test_nested_lineage_is_flattened():
    """Compressing a summary folds its lineage into the new one."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    for n in range(1, 6):
        store.add(_thought(n), compressor=_summarizer("s"))
    summary = store.thoughts[-1]
    assert "t1" in summary.lineage
    assert len(set(summary.lineage)) == len(summary.lineage)


def test_preview_matches_add():
    """select_compression_run() names the run add() then compresses."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    store.add(_thought(1))
    store.add(_thought(2))
    incoming = _thought(3, size=70)

    preview = [t.id for t in store.select_compression_run(incoming)]
    compress = _summarizer("s")
    store.add(incoming, compressor=compress)

    assert compress.calls == [preview]
    assert preview == ["t1", "t2"]


def test_preview_empty_when_within_budget():
    """No overflow, no run."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    store.add(_thought(1))
    assert store.select_compression_run(_thought(2)) == []


# ── Serialization / helpers ────────────────────────────────────────────────


def test_restore_roundtrip():
    """to_list / restore keep order and size."""
    store = MemoryStore(MemoryConfig(max_bytes=100))
    for n in range(1, 4):
        store.add(_thought(n, size=20))
    other = MemoryStore(MemoryConfig(max_bytes=100))
    other.restore(store.to_list())

    assert other.ids() == store.ids()
    assert other.total_size == store.total_size


def test_thought_dict_roundtrip():
    """Thought survives to_dict / from_dict."""
    t = Thought(
        id="a", content="héllo", cycle=3, relevance=0.4, created_at="now",
        embedding=(0.1, 0.2), topics=("x",), cycle_end=5, lineage=("b",), compressed=True,
    )
    assert Thought.from_dict(t.to_dict()) == t
    assert t.size == len("héllo".encode("utf-8"))


def test_trim_to_bytes_respects_characters():
    """Multi-byte characters are never split."""
    assert trim_to_bytes("ééé", 3) == "é"
    assert trim_to_bytes("abc", 0) == ""


def test_thought_ids_are_deterministic():
    """Same parts, same id."""
    assert make_thought_id((1, 2), 3, "x") == make_thought_id((1, 2), 3, "x")
    assert make_thought_id((1, 2), 3, "x") != make_thought_id((1, 2), 4, "x")
