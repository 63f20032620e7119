from __future__ import annotations

import re
from typing import Iterator

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

# Subtrees whose text is never shown to the reader.
NON_CONTENT_TAGS = frozenset({"script", "style", "noscript", "template", "head", "title"})

# Blocks that can receive a summary marker.
MARKER_BLOCK_TAGS = frozenset(
    {"p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote"}
)

# Block elements that own their text for word wrapping.
BLOCK_LEVEL_TAGS = frozenset(
    {
        "address",
        "article",
        "aside",
        "blockquote",
        "body",
        "dd",
        "div",
        "dl",
        "dt",
        "figcaption",
        "figure",
        "footer",
        "form",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "header",
        "hgroup",
        "li",
        "main",
        "nav",
        "ol",
        "p",
        "pre",
        "section",
        "table",
        "td",
        "th",
        "tr",
        "ul",
    }
)

MARKER_CLASS = "summary-marker"
WORD_CLASS = "word"

_WS_RE = re.compile(r"\s+")


def has_class(tag: Tag, name: str) -> bool:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    return name in classes


def is_marker(node: object) -> bool:
    return isinstance(node, Tag) and has_class(node, MARKER_CLASS)


def is_text_leaf(node: object) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def iter_text_leaves(root: Tag, *, skip_markers: bool = True) -> Iterator[NavigableString]:
    """Yield visible text nodes under ``root`` in document order."""
    for child in list(root.children):
        if isinstance(child, Tag):
            if child.name in NON_CONTENT_TAGS:
                continue
            if skip_markers and is_marker(child):
                continue
            yield from iter_text_leaves(child, skip_markers=skip_markers)
        elif is_text_leaf(child):
            yield child


def nearest_ancestor(node: NavigableString | Tag, names: frozenset[str], stop: Tag | None) -> Tag | None:
    """Closest ancestor whose tag name is in ``names``, never climbing past ``stop``."""
    for parent in node.parents:
        if stop is not None and parent is stop:
            return None
        if parent.name in names:
            return parent
    return None


def owning_block(node: NavigableString | Tag, root: Tag) -> Tag:
    """Nearest block-level ancestor of ``node``, or ``root`` if none sits below it."""
    for parent in node.parents:
        if parent is root:
            return root
        if parent.name in BLOCK_LEVEL_TAGS:
            return parent
    return root


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def owner_soup(node: Tag) -> BeautifulSoup | None:
    if isinstance(node, BeautifulSoup):
        return node
    for parent in node.parents:
        if isinstance(parent, BeautifulSoup):
            return parent
    return None


def new_tag(near: Tag, name: str, css_class: str) -> Tag:
    """Create a tag owned by the same soup as ``near``."""
    soup = owner_soup(near)
    if soup is not None:
        return soup.new_tag(name, attrs={"class": css_class})
    return Tag(name=name, attrs={"class": css_class})
