from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Protocol

from .logging_utils import debug_log
from .words import WordIndex, WordState, WordUnit, is_whitespace_or_punctuation

DEFAULT_DEBOUNCE_SECONDS = 0.8
DEFAULT_ADJACENCY_WINDOW = 10


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


def _asyncio_scheduler(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class SelectionState(Enum):
    IDLE = "idle"
    HIGHLIGHTED_PENDING = "highlighted-pending"
    RESOLVING = "resolving"


class SelectionEngine:
    """
    Click-driven highlight state and multi-word phrase composition.

    Clicking a plain word highlights it and (re)starts a debounce timer. When
    the timer fires, the clicked word and every highlighted neighbour found
    by the adjacency scan are joined into one phrase and handed to
    ``on_lookup``. Clicking a highlighted word toggles it off and cancels the
    pending lookup; clicking a defined word looks it up immediately.
    """

    def __init__(
        self,
        index: WordIndex,
        on_lookup: Callable[[str], None],
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        window: int = DEFAULT_ADJACENCY_WINDOW,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.index = index
        self.on_lookup = on_lookup
        self.debounce_seconds = debounce_seconds
        self.window = window
        self._scheduler = scheduler or _asyncio_scheduler
        self._timer: TimerHandle | None = None
        self.pending: list[WordUnit] = []
        self.state = SelectionState.IDLE

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def click(self, unit: WordUnit) -> None:
        if unit.defined:
            self.on_lookup(unit.text)
            return

        if unit.highlighted:
            self.index.set_state(unit, WordState.PLAIN)
            self._cancel_timer()
            self.pending = []
            self.state = SelectionState.IDLE
            debug_log(f"selection cancelled at '{unit.text}'")
            return

        self.index.set_state(unit, WordState.HIGHLIGHTED)
        self.state = SelectionState.HIGHLIGHTED_PENDING
        self._cancel_timer()
        self.pending = self.adjacent_highlighted(unit)
        self._timer = self._scheduler(self.debounce_seconds, self._fire)
        self.state = SelectionState.RESOLVING

    def adjacent_highlighted(self, unit: WordUnit) -> list[WordUnit]:
        """
        Highlighted units next to ``unit`` in document order, ``unit`` included.

        The scan looks at most ``window`` units each way. Whitespace and
        punctuation-only units are stepped over, as are plain units repeating
        text already collected; any other plain unit ends the run.
        """
        units = self.index.units()
        try:
            position = units.index(unit)
        except ValueError:
            debug_log(f"word '{unit.text}' is not part of the indexed document")
            return [unit]

        collected = [unit]
        seen_texts = {unit.text}

        for step in (-1, 1):
            offset = 1
            while offset <= self.window:
                idx = position + step * offset
                offset += 1
                if idx < 0 or idx >= len(units):
                    break
                candidate = units[idx]
                text = candidate.text
                if text in seen_texts and not candidate.highlighted:
                    continue
                if candidate.highlighted:
                    if step < 0:
                        collected.insert(0, candidate)
                    else:
                        collected.append(candidate)
                    seen_texts.add(text)
                elif is_whitespace_or_punctuation(text):
                    continue
                else:
                    break
        return collected

    def _fire(self) -> None:
        self._timer = None
        words = self.pending
        self.pending = []
        self.state = SelectionState.IDLE
        if not words:
            return
        if len(words) > 1:
            for unit in words:
                if unit.state is WordState.PLAIN:
                    self.index.set_state(unit, WordState.HIGHLIGHTED)
            text = " ".join(unit.text for unit in words).strip()
        else:
            text = words[0].text
        if text:
            self.on_lookup(text)

    def reset(self) -> None:
        """Drop every transient highlight and any pending lookup."""
        self._cancel_timer()
        self.pending = []
        self.state = SelectionState.IDLE
        self.index.clear_highlights()


__all__ = [
    "DEFAULT_ADJACENCY_WINDOW",
    "DEFAULT_DEBOUNCE_SECONDS",
    "Scheduler",
    "SelectionEngine",
    "SelectionState",
    "TimerHandle",
]
