from __future__ import annotations

import random

import pytest
from bs4 import BeautifulSoup

from glossread.dom import MARKER_CLASS, is_marker
from glossread.segment import (
    find_boundary_blocks,
    insert_summary_markers,
    iter_markers,
    section_text,
)


def _body(html: str):
    soup = BeautifulSoup(f"<html><head></head><body>{html}</body></html>", "html.parser")
    return soup.body


def _random_document(rng: random.Random) -> str:
    parts = []
    for _ in range(rng.randint(5, 40)):
        text = "x" * rng.randint(1, 900)
        tag = rng.choice(["p", "div", "h2", "li", "blockquote"])
        if rng.random() < 0.3:
            parts.append(f"<{tag}><em>{text}</em> {text}</{tag}>")
        else:
            parts.append(f"<{tag}>{text}</{tag}>")
    return "".join(parts)


@pytest.mark.parametrize("seed", range(8))
@pytest.mark.parametrize("interval", [1, 50, 777, 5000])
def test_markers_are_unique_per_block(seed: int, interval: int) -> None:
    body = _body(_random_document(random.Random(seed)))
    markers = insert_summary_markers(body, interval)
    parents = [marker.parent for marker in markers]
    assert len({id(parent) for parent in parents}) == len(parents)
    for parent in parents:
        assert len(parent.find_all("div", class_=MARKER_CLASS, recursive=False)) == 1
        assert is_marker(parent.contents[-1])


def test_one_leaf_crossing_several_thresholds_gets_one_marker() -> None:
    body = _body(f"<p>{'a' * 12000}</p><p>tail</p>")
    markers = insert_summary_markers(body, 5000)
    assert len(markers) == 1
    assert markers[0].parent is body.find("p")


def test_no_marker_when_threshold_not_crossed() -> None:
    body = _body(f"<p>{'a' * 4999}</p>")
    assert insert_summary_markers(body, 5000) == []


def test_script_and_style_are_not_counted() -> None:
    body = _body(
        f"<script>{'s' * 9000}</script><style>{'c' * 9000}</style><p>{'a' * 100}</p>"
    )
    assert insert_summary_markers(body, 5000) == []


def test_marker_goes_to_nearest_marker_block() -> None:
    body = _body(f"<div><ul><li><span>{'a' * 60}</span></li></ul></div>")
    (block,) = find_boundary_blocks(body, 50)
    assert block.name == "li"


def test_text_without_marker_block_is_skipped() -> None:
    body = _body(f"<span>{'a' * 60}</span><p>{'b' * 60}</p>")
    blocks = find_boundary_blocks(body, 50)
    assert [block.name for block in blocks] == ["p"]


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        find_boundary_blocks(_body("<p>x</p>"), 0)


def test_section_text_spans_previous_marker_to_marker() -> None:
    body = _body(
        "<p>alpha   one</p>"
        "<p>alpha two</p>"
        "<p>beta one</p>"
        "<p>beta\ntwo</p>"
    )
    paragraphs = body.find_all("p")
    first = BeautifulSoup("", "html.parser").new_tag("div", attrs={"class": MARKER_CLASS})
    second = BeautifulSoup("", "html.parser").new_tag("div", attrs={"class": MARKER_CLASS})
    paragraphs[1].append(first)
    paragraphs[3].append(second)
    markers = list(iter_markers(body))
    assert len(markers) == 2
    assert section_text(body, markers[0]) == "alpha onealpha two"
    assert section_text(body, markers[1]) == "beta onebeta two"


def test_section_text_is_capped() -> None:
    body = _body(f"<p>{'word ' * 3000}</p>")
    (marker,) = insert_summary_markers(body, 5000)
    text = section_text(body, marker, limit=8000)
    assert len(text) == 8000
    assert section_text(body, marker, limit=20) == "word word word word "


def test_section_text_rejects_foreign_marker() -> None:
    body = _body("<p>text</p>")
    stray = BeautifulSoup("", "html.parser").new_tag("div", attrs={"class": MARKER_CLASS})
    with pytest.raises(ValueError):
        section_text(body, stray)
