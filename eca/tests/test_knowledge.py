"""Tests for knowledge-base loading."""

import os
import shutil
import tempfile

import pytest

from eca.core.knowledge import KnowledgeBase, combine_documents, load_knowledge_files


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory, cleaned up after test."""
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


def _write(tmp_dir, name, text):
    with open(os.path.join(tmp_dir, name), "w", encoding="utf-8") as f:
        f.write(text)


def test_loads_text_and_markdown_sorted(tmp_dir):
    """Only .txt and .md files, in name order."""
    _write(tmp_dir, "b.md", "# heading")
    _write(tmp_dir, "a.txt", "plain")
    _write(tmp_dir, "c.json", "{}")
    os.mkdir(os.path.join(tmp_dir, "sub.txt"))

    files = load_knowledge_files(tmp_dir)
    assert files == [("a.txt", "plain"), ("b.md", "# heading")]


def test_missing_directory_is_empty(tmp_dir):
    """A directory that doesn't exist holds no knowledge."""
    assert load_knowledge_files(os.path.join(tmp_dir, "nope")) == []


def test_undecodable_file_is_skipped(tmp_dir):
    """A file that isn't UTF-8 is skipped, the rest still load."""
    with open(os.path.join(tmp_dir, "bad.txt"), "wb") as f:
        f.write(b"\xff\xfe\xfa")
    _write(tmp_dir, "good.md", "fine")
    assert load_knowledge_files(tmp_dir) == [("good.md", "fine")]


def test_combine_documents():
    """Each document is headed by its file name."""
    text = combine_documents([("a.txt", "one"), ("b.md", "two")])
    assert text == "File: a.txt\none\n\n---\nFile: b.md\ntwo\n"


def test_knowledge_base_state():
    kb = KnowledgeBase("condensed", ["a.txt"])
    state = kb.get_state()
    assert state["source_files"] == ["a.txt"]
    assert state["chars"] == 9
