"""Class label table.

Parses newline-delimited label files (one class per line, in model output
order) and strips WordNet ID prefixes such as ``n01440764 tench``. An entry
may hold several comma-separated synonyms, e.g. ``goldfish, Carassius auratus``.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"

_LINE_SPLIT = re.compile(r"[\r\n]")


def _strip_wordnet_id(line: str) -> str:
    space = line.find(" ")
    if line.startswith("n") and 0 < space < len(line) - 1:
        return line[space + 1 :]
    return line


def build_labels(text: str | None) -> tuple[str, ...]:
    """Parse raw label text into an ordered tuple of display labels.

    Returns an empty tuple when ``text`` is None.
    """
    if text is None:
        return ()
    lines = (part for part in _LINE_SPLIT.split(text) if part)
    return tuple(_strip_wordnet_id(line.strip()) for line in lines)


class LabelTable:
    """Immutable, index-ordered table of class labels."""

    __slots__ = ("_labels",)

    def __init__(self, labels: tuple[str, ...] = ()) -> None:
        self._labels = tuple(labels)

    @classmethod
    def from_text(cls, text: str | None) -> LabelTable:
        return cls(build_labels(text))

    @classmethod
    def from_file(cls, path: str | Path | None) -> LabelTable:
        """Load a label file. A missing or unreadable file gives an empty table."""
        if path is None:
            logger.warning("No labels file configured; all predictions will be '%s'", UNKNOWN_LABEL)
            return cls()
        try:
            text = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read labels from %s: %s", path, exc)
            return cls()
        table = cls.from_text(text)
        logger.info("Loaded %d labels from %s", len(table), path)
        return table

    def label_for(self, index: int) -> str:
        """Return the label at ``index``, or ``"Unknown"`` if there is none."""
        if 0 <= index < len(self._labels):
            return self._labels[index]
        return UNKNOWN_LABEL

    def find(self, target: str | None) -> int | None:
        """Return the index of the first entry with a synonym equal to ``target``.

        Synonyms are the comma-separated parts of an entry. Comparison is
        case-insensitive on the trimmed strings; substrings never match.
        """
        if target is None:
            return None
        wanted = target.strip().lower()
        if not wanted:
            return None
        for index, entry in enumerate(self._labels):
            if any(synonym.strip().lower() == wanted for synonym in entry.split(",")):
                return index
        return None

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __getitem__(self, index: int) -> str:
        return self._labels[index]

    def __repr__(self) -> str:
        return f"LabelTable({len(self._labels)} labels)"
