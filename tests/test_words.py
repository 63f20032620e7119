from __future__ import annotations

from bs4 import BeautifulSoup

from glossread.dom import MARKER_CLASS, WORD_CLASS
from glossread.words import (
    LazyTokenizer,
    WordIndex,
    WordState,
    is_whitespace_or_punctuation,
    normalize_word,
)


def _body(html: str):
    soup = BeautifulSoup(f"<html><head></head><body>{html}</body></html>", "html.parser")
    return soup.body


class RecordingNotifier:
    def __init__(self) -> None:
        self.observed = []

    def observe(self, element, margin_px, callback) -> None:
        self.observed.append((element, margin_px, callback))

    def fire(self, element) -> None:
        for observed, _, callback in self.observed:
            if observed is element:
                callback(element)


def test_normalize_word() -> None:
    assert normalize_word("  Resolute ") == "resolute"


def test_whitespace_or_punctuation() -> None:
    assert is_whitespace_or_punctuation(",")
    assert is_whitespace_or_punctuation(" — ")
    assert is_whitespace_or_punctuation("...")
    assert is_whitespace_or_punctuation("")
    assert not is_whitespace_or_punctuation("a,")
    assert not is_whitespace_or_punctuation("42")


def test_wrap_block_preserves_text_and_spacing() -> None:
    body = _body("<p>The  quick\nbrown <em>fox</em> jumps.</p>")
    paragraph = body.p
    before = paragraph.get_text()
    tokenizer = LazyTokenizer(body)
    units = tokenizer.wrap_block(paragraph)
    assert [unit.text for unit in units] == ["The", "quick", "brown", "fox", "jumps."]
    assert paragraph.get_text() == before
    assert all(unit.state is WordState.PLAIN for unit in units)
    assert len(paragraph.find_all("span", class_=WORD_CLASS)) == 5


def test_wrap_block_is_idempotent() -> None:
    body = _body("<p>one two</p>")
    tokenizer = LazyTokenizer(body)
    assert len(tokenizer.wrap_block(body.p)) == 2
    html = str(body)
    assert tokenizer.wrap_block(body.p) == []
    assert str(body) == html
    assert tokenizer.is_wrapped(body.p)
    assert len(tokenizer.index) == 2


def test_nested_blocks_wrap_only_owned_text() -> None:
    body = _body("<div>outer <p>inner words</p> tail</div>")
    tokenizer = LazyTokenizer(body)
    outer = tokenizer.wrap_block(body.div)
    assert [unit.text for unit in outer] == ["outer", "tail"]
    assert body.p.find("span") is None
    inner = tokenizer.wrap_block(body.p)
    assert [unit.text for unit in inner] == ["inner", "words"]


def test_markers_and_scripts_are_not_wrapped() -> None:
    body = _body(
        f'<p>visible<div class="{MARKER_CLASS}">x</div></p>'
        "<script>var a = 1;</script>"
    )
    tokenizer = LazyTokenizer(body)
    tokenizer.wrap_all()
    assert body.find("div", class_=MARKER_CLASS).find("span") is None
    assert body.script.find("span") is None
    assert [unit.text for unit in tokenizer.index.units()] == ["visible"]


def test_cached_words_start_defined() -> None:
    body = _body("<p>A resolute Resolute man</p>")
    calls = []

    def is_cached(word: str) -> bool:
        calls.append(word)
        return word == "resolute"

    tokenizer = LazyTokenizer(body, is_cached=is_cached)
    units = tokenizer.wrap_block(body.p)
    states = [unit.state for unit in units]
    assert states == [WordState.PLAIN, WordState.DEFINED, WordState.DEFINED, WordState.PLAIN]
    assert units[1].span["class"] == [WORD_CLASS, "defined"]
    assert calls.count("resolute") == 1


def test_observe_registers_blocks_with_margin() -> None:
    body = _body("<h1>Title</h1><p>first</p><p>   </p><p>second</p>")
    tokenizer = LazyTokenizer(body)
    notifier = RecordingNotifier()
    assert tokenizer.observe(notifier, 400) == 3
    assert all(margin == 400 for _, margin, _ in notifier.observed)
    assert body.find("span") is None
    notifier.fire(body.find_all("p")[2])
    assert [unit.text for unit in tokenizer.index.units()] == ["second"]
    assert body.h1.find("span") is None


def test_index_sweeps_by_normalized_word() -> None:
    body = _body("<p>Tide tide TIDE ebb</p>")
    tokenizer = LazyTokenizer(body)
    tokenizer.wrap_all()
    index = tokenizer.index
    assert index.mark_defined(" tide") == 3
    assert index.mark_defined("tide") == 0
    assert index.is_defined("Tide")
    assert not index.is_defined("ebb")
    assert index.unmark_defined("TIDE") == 3
    assert not index.is_defined("tide")
    assert [unit.span["class"] for unit in index.units()] == [[WORD_CLASS]] * 4


def test_clear_highlights() -> None:
    body = _body("<p>a b c</p>")
    tokenizer = LazyTokenizer(body)
    units = tokenizer.wrap_block(body.p)
    index = tokenizer.index
    index.set_state(units[0], WordState.HIGHLIGHTED)
    index.set_state(units[2], WordState.DEFINED)
    assert index.highlighted() == [units[0]]
    assert index.clear_highlights() == 1
    assert units[0].state is WordState.PLAIN
    assert units[2].state is WordState.DEFINED


def test_units_follow_document_order() -> None:
    body = _body("<p>first</p><p>second</p>")
    index = WordIndex(body)
    tokenizer = LazyTokenizer(body, index)
    paragraphs = body.find_all("p")
    tokenizer.wrap_block(paragraphs[1])
    tokenizer.wrap_block(paragraphs[0])
    assert [unit.text for unit in index.units()] == ["first", "second"]
