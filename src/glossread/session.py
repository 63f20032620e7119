from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from bs4 import Tag

from .annotations import AnnotationService, InsufficientText, Unavailable
from .config import ReaderConfig
from .core import AssembledDocument, build_document
from .logging_utils import debug_log
from .segment import section_text
from .selection import Scheduler, SelectionEngine
from .storage import (
    BookShelf,
    KeyValueStore,
    get_scroll_position,
    save_book_record,
    save_scroll_position,
)
from .words import LazyTokenizer, VisibilityNotifier, WordIndex, WordUnit


@dataclass
class PanelContent:
    """What the host shell should show in its lookup panel."""

    kind: str
    title: str
    text: str
    example: str = ""
    failed: bool = False


class ReadingSession:
    """
    One opened book: the assembled tree plus the interactive layers on top.

    A host shell drives the session with visibility, click, scroll and
    panel events; lookup results come back through ``on_panel``.
    """

    def __init__(
        self,
        service: AnnotationService,
        store: KeyValueStore,
        *,
        config: ReaderConfig | None = None,
        on_panel: Callable[[PanelContent], None] | None = None,
        scheduler: Scheduler | None = None,
        shelf: BookShelf | None = None,
    ) -> None:
        self.service = service
        self.store = store
        self.config = config or ReaderConfig()
        self.on_panel = on_panel or (lambda content: None)
        self.shelf = shelf
        self._scheduler = scheduler
        self._tasks: set[asyncio.Task] = set()
        self.document: AssembledDocument | None = None
        self.index: WordIndex | None = None
        self.tokenizer: LazyTokenizer | None = None
        self.engine: SelectionEngine | None = None

    def load(self, data: bytes, name: str = "book.epub") -> AssembledDocument:
        document = build_document(data, summary_interval=self.config.summary_interval)
        self.document = document
        self.index = WordIndex(document.body)
        self.tokenizer = LazyTokenizer(
            document.body,
            self.index,
            is_cached=self.service.is_defined,
        )
        self.engine = SelectionEngine(
            self.index,
            self._request_definition,
            debounce_seconds=self.config.debounce_seconds,
            window=self.config.adjacency_window,
            scheduler=self._scheduler,
        )
        save_book_record(self.store, name, len(data))
        if self.shelf is not None:
            self.shelf.save(data)
        debug_log(f"opened {name}: {len(document.markers)} summary sections")
        return document

    async def open_book(self, source: bytes | Path, name: str | None = None) -> AssembledDocument:
        if isinstance(source, Path):
            name = name or source.name
            data = source.read_bytes()
        else:
            data = source
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.load, data, name or "book.epub")

    def _require_open(self) -> tuple[AssembledDocument, WordIndex, LazyTokenizer, SelectionEngine]:
        if self.document is None or self.index is None or self.tokenizer is None or self.engine is None:
            raise RuntimeError("No book is open.")
        return self.document, self.index, self.tokenizer, self.engine

    def observe(self, notifier: VisibilityNotifier) -> int:
        _, _, tokenizer, _ = self._require_open()
        return tokenizer.observe(notifier, self.config.preload_margin_px)

    def on_visible(self, block: Tag) -> list[WordUnit]:
        _, _, tokenizer, _ = self._require_open()
        return tokenizer.wrap_block(block)

    def click_word(self, span: Tag) -> None:
        _, index, _, engine = self._require_open()
        unit = index.unit_for(span)
        if unit is None:
            debug_log("click on an unwrapped span ignored")
            return
        engine.click(unit)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _request_definition(self, text: str) -> None:
        self._spawn(self.define(text))

    async def define(self, text: str) -> PanelContent:
        try:
            result = await self.service.lookup_word(text)
        except Unavailable as exc:
            content = PanelContent(kind="definition", title=text, text=str(exc), failed=True)
        else:
            content = PanelContent(
                kind="definition",
                title=result.word,
                text=result.definition,
                example=result.example,
                failed=result.failed,
            )
            if not result.failed and self.index is not None:
                if self.engine is None or not self.engine.pending:
                    self.index.clear_highlights()
                self.index.mark_defined(text)
        self.on_panel(content)
        return content

    async def summarize(self, marker: Tag) -> PanelContent:
        document, _, _, _ = self._require_open()
        text = section_text(document.body, marker, self.config.max_summary_text)
        try:
            result = await self.service.summarize_section(text)
        except (InsufficientText, Unavailable) as exc:
            content = PanelContent(kind="summary", title="Summary", text=str(exc), failed=True)
        else:
            content = PanelContent(
                kind="summary",
                title="Summary",
                text=result.summary,
                failed=result.failed,
            )
        self.on_panel(content)
        return content

    def click_marker(self, marker: Tag) -> asyncio.Task:
        return self._spawn(self.summarize(marker))

    def unmark(self, word: str) -> int:
        """Forget a cached definition and clear its marks in the document."""
        self.service.remove_word(word)
        if self.index is None:
            return 0
        return self.index.unmark_defined(word)

    def on_scroll(self, offset: int) -> None:
        if self.engine is not None:
            self.engine.reset()
        save_scroll_position(self.store, offset)

    def close_panel(self) -> None:
        if self.engine is not None:
            self.engine.reset()

    def restore_scroll_position(self) -> int:
        return get_scroll_position(self.store)

    async def drain(self) -> None:
        """Wait for lookups already in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


__all__ = ["PanelContent", "ReadingSession"]
