# ═══════════════════════════════════════════════════════════════════════════════
# PART 12: KNOWLEDGE BASE
# Design: A3 (ML Integration) | Implementation: I4 (Integration)
# ═══════════════════════════════════════════════════════════════════════════════

"""
A3: "Operators drop .txt and .md files in a directory. At startup the model
condenses them once, and every thought request carries the result. If the
model can't condense them, the colony just runs without it."
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple, Union

from eca.core.memory import now_iso

logger = logging.getLogger(__name__)

KNOWLEDGE_SUFFIXES = (".txt", ".md")


@dataclass
class KnowledgeBase:
    """Condensed knowledge shared by every cell for the life of the process."""
    content: str
    source_files: List[str] = field(default_factory=list)
    loaded_at: str = field(default_factory=now_iso)

    def get_state(self) -> dict:
        return {
            "source_files": list(self.source_files),
            "chars": len(self.content),
            "loaded_at": self.loaded_at,
        }


def load_knowledge_files(directory: Union[str, Path]) -> List[Tuple[str, str]]:
    """
    (file name, text) for every .txt / .md file directly in `directory`.

    Sorted by name. A missing directory yields nothing. Unreadable files are
    skipped with a warning.
    """
    root = Path(directory)
    if not root.is_dir():
        return []

    files = []
    for path in sorted(root.iterdir()):
        if not path.is_file() or path.suffix.lower() not in KNOWLEDGE_SUFFIXES:
            continue
        try:
            files.append((path.name, path.read_text(encoding="utf-8")))
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping knowledge file %s: %s", path, exc)
    return files


def combine_documents(files: List[Tuple[str, str]]) -> str:
    """One text block, each file headed by its name."""
    return "\n---\n".join(f"File: {name}\n{text}\n" for name, text in files)
