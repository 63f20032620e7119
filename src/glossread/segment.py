from __future__ import annotations

from typing import Iterator

from bs4 import Tag

from .dom import (
    MARKER_BLOCK_TAGS,
    MARKER_CLASS,
    NON_CONTENT_TAGS,
    collapse_whitespace,
    is_marker,
    is_text_leaf,
    iter_text_leaves,
    nearest_ancestor,
    new_tag,
)

DEFAULT_SUMMARY_INTERVAL = 5000
DEFAULT_MAX_SUMMARY_TEXT = 8000


def find_boundary_blocks(body: Tag, interval: int = DEFAULT_SUMMARY_INTERVAL) -> list[Tag]:
    """
    Return the blocks that should receive a summary marker, in walk order.

    Text leaves are visited in document order while a character counter runs.
    Whenever a leaf pushes the counter across a multiple of ``interval`` its
    nearest marker-capable ancestor is recorded, once, no matter how many
    multiples that leaf (or its siblings) crossed.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")
    seen: dict[int, Tag] = {}
    count = 0
    for leaf in iter_text_leaves(body):
        start = count
        count += len(leaf)
        if count // interval <= start // interval:
            continue
        block = nearest_ancestor(leaf, MARKER_BLOCK_TAGS, stop=body)
        if block is not None and id(block) not in seen:
            seen[id(block)] = block
    return list(seen.values())


def insert_summary_markers(body: Tag, interval: int = DEFAULT_SUMMARY_INTERVAL) -> list[Tag]:
    """Append one empty marker as the last child of every boundary block."""
    markers: list[Tag] = []
    for block in find_boundary_blocks(body, interval):
        marker = new_tag(body, "div", MARKER_CLASS)
        block.append(marker)
        markers.append(marker)
    return markers


def iter_markers(body: Tag) -> Iterator[Tag]:
    yield from body.find_all("div", class_=MARKER_CLASS)


def _section_leaves(body: Tag, marker: Tag) -> Iterator[str]:
    previous: Tag | None = None
    for candidate in iter_markers(body):
        if candidate is marker:
            break
        previous = candidate
    else:
        raise ValueError("marker does not belong to this document")

    collecting = previous is None
    for node in body.descendants:
        if node is marker:
            return
        if node is previous:
            collecting = True
            continue
        if not collecting or not is_text_leaf(node):
            continue
        if any(
            parent.name in NON_CONTENT_TAGS or is_marker(parent)
            for parent in node.parents
            if parent is not body
        ):
            continue
        yield str(node)


def section_text(body: Tag, marker: Tag, limit: int = DEFAULT_MAX_SUMMARY_TEXT) -> str:
    """
    Text between the previous marker (or the start of the book) and ``marker``.

    Whitespace is collapsed to single spaces and the result is capped at
    ``limit`` characters.
    """
    text = collapse_whitespace("".join(_section_leaves(body, marker)))
    return text[:limit]


__all__ = [
    "DEFAULT_MAX_SUMMARY_TEXT",
    "DEFAULT_SUMMARY_INTERVAL",
    "find_boundary_blocks",
    "insert_summary_markers",
    "iter_markers",
    "section_text",
]
