from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Protocol

from bs4 import NavigableString, Tag

from .dom import WORD_CLASS, has_class, iter_text_leaves, new_tag, owning_block
from .logging_utils import debug_log

_SPLIT_RE = re.compile(r"(\s+)")

HIGHLIGHTED_CLASS = "highlighted"
DEFINED_CLASS = "defined"


class WordState(Enum):
    PLAIN = "plain"
    HIGHLIGHTED = "highlighted"
    DEFINED = "defined"


def normalize_word(text: str) -> str:
    return text.strip().lower()


def is_whitespace_or_punctuation(text: str) -> bool:
    for ch in text:
        if ch.isspace():
            continue
        if unicodedata.category(ch).startswith("P"):
            continue
        return False
    return True


@dataclass(eq=False)
class WordUnit:
    """One clickable word span plus its display state."""

    span: Tag
    state: WordState = WordState.PLAIN

    @property
    def text(self) -> str:
        return self.span.get_text().strip()

    @property
    def key(self) -> str:
        return normalize_word(self.span.get_text())

    @property
    def highlighted(self) -> bool:
        return self.state is WordState.HIGHLIGHTED

    @property
    def defined(self) -> bool:
        return self.state is WordState.DEFINED


class WordIndex:
    """
    Registry of every word unit created in a document.

    The index is the source of truth for per-word state; the span's CSS
    classes only mirror it so a renderer can style the word.
    """

    def __init__(self, root: Tag) -> None:
        self.root = root
        self._units: dict[int, WordUnit] = {}

    def __len__(self) -> int:
        return len(self._units)

    def register(self, span: Tag, state: WordState = WordState.PLAIN) -> WordUnit:
        unit = self._units.get(id(span))
        if unit is None:
            unit = WordUnit(span=span)
            self._units[id(span)] = unit
        self.set_state(unit, state)
        return unit

    def unit_for(self, span: Tag) -> WordUnit | None:
        return self._units.get(id(span))

    def units(self) -> list[WordUnit]:
        """All registered units in document order."""
        ordered: list[WordUnit] = []
        for span in self.root.find_all("span", class_=WORD_CLASS):
            unit = self._units.get(id(span))
            if unit is not None:
                ordered.append(unit)
        return ordered

    def matching(self, word: str) -> Iterator[WordUnit]:
        key = normalize_word(word)
        for unit in self._units.values():
            if unit.key == key:
                yield unit

    def set_state(self, unit: WordUnit, state: WordState) -> None:
        unit.state = state
        classes = [WORD_CLASS]
        if state is WordState.HIGHLIGHTED:
            classes.append(HIGHLIGHTED_CLASS)
        elif state is WordState.DEFINED:
            classes.append(DEFINED_CLASS)
        unit.span["class"] = classes

    def mark_defined(self, word: str) -> int:
        count = 0
        for unit in self.matching(word):
            if not unit.defined:
                self.set_state(unit, WordState.DEFINED)
                count += 1
        return count

    def unmark_defined(self, word: str) -> int:
        count = 0
        for unit in self.matching(word):
            if unit.defined:
                self.set_state(unit, WordState.PLAIN)
                count += 1
        return count

    def is_defined(self, word: str) -> bool:
        return any(unit.defined for unit in self.matching(word))

    def highlighted(self) -> list[WordUnit]:
        return [unit for unit in self.units() if unit.highlighted]

    def clear_highlights(self) -> int:
        count = 0
        for unit in self._units.values():
            if unit.highlighted:
                self.set_state(unit, WordState.PLAIN)
                count += 1
        return count


class VisibilityNotifier(Protocol):
    def observe(self, element: Tag, margin_px: int, callback: Callable[[Tag], None]) -> None:
        ...


class LazyTokenizer:
    """
    Wrap the words of a block in ``<span class="word">`` the first time the
    block comes into view.

    Each block only wraps the text it owns directly (text whose nearest
    block-level ancestor is the block itself), so nested blocks are handled
    by their own visibility notifications. Wrapping is one-shot per block.
    """

    def __init__(
        self,
        root: Tag,
        index: WordIndex | None = None,
        *,
        is_cached: Callable[[str], bool] | None = None,
    ) -> None:
        self.root = root
        self.index = index if index is not None else WordIndex(root)
        self.is_cached = is_cached
        self._wrapped: dict[int, Tag] = {}

    def _owned_leaves(self, block: Tag) -> list[NavigableString]:
        leaves: list[NavigableString] = []
        for leaf in iter_text_leaves(block):
            parent = leaf.parent
            if isinstance(parent, Tag) and parent.name == "span" and has_class(parent, WORD_CLASS):
                continue
            if owning_block(leaf, self.root) is block:
                leaves.append(leaf)
        return leaves

    def blocks(self) -> list[Tag]:
        """Blocks that own visible text, in document order."""
        seen: dict[int, Tag] = {}
        for leaf in iter_text_leaves(self.root):
            if not leaf.strip():
                continue
            block = owning_block(leaf, self.root)
            seen.setdefault(id(block), block)
        return list(seen.values())

    def observe(self, notifier: VisibilityNotifier, margin_px: int = 400) -> int:
        blocks = self.blocks()
        for block in blocks:
            notifier.observe(block, margin_px, self.on_visible)
        return len(blocks)

    def on_visible(self, block: Tag) -> None:
        self.wrap_block(block)

    def is_wrapped(self, block: Tag) -> bool:
        return id(block) in self._wrapped

    def wrap_block(self, block: Tag) -> list[WordUnit]:
        if id(block) in self._wrapped:
            return []
        self._wrapped[id(block)] = block

        created: list[WordUnit] = []
        for leaf in self._owned_leaves(block):
            text = str(leaf)
            if not text.strip():
                continue
            replacement: list[Tag | NavigableString] = []
            for piece in _SPLIT_RE.split(text):
                if not piece:
                    continue
                if piece.isspace():
                    replacement.append(NavigableString(piece))
                    continue
                span = new_tag(block, "span", WORD_CLASS)
                span.string = piece
                replacement.append(span)
                created.append(self.index.register(span))
            leaf.replace_with(*replacement)

        if self.is_cached is not None:
            hits: dict[str, bool] = {}
            for unit in created:
                key = unit.key
                if key not in hits:
                    hits[key] = self.is_cached(key)
                if hits[key]:
                    self.index.set_state(unit, WordState.DEFINED)
        debug_log(f"wrapped {len(created)} words in <{block.name}>")
        return created

    def wrap_all(self) -> int:
        return sum(len(self.wrap_block(block)) for block in self.blocks())


__all__ = [
    "LazyTokenizer",
    "VisibilityNotifier",
    "WordIndex",
    "WordState",
    "WordUnit",
    "is_whitespace_or_punctuation",
    "normalize_word",
]
