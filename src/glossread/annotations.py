from __future__ import annotations

import asyncio
import functools
import hashlib
import json
import re
from dataclasses import dataclass
from typing import Callable

from .config import ReaderConfig
from .generation import GenerationError, TextGenerator
from .logging_utils import debug_log, warn
from .storage import KeyValueStore
from .words import normalize_word

DEFINITION_PREFIX = "definition:"
SUMMARY_PREFIX = "summary:"
DEFINITION_FAILED_MESSAGE = "Failed to load definition"
SUMMARY_FAILED_MESSAGE = "Failed to generate summary"

_DEFINITION_RE = re.compile(r"definition:\s*(.+?)(?:\n|example:|$)", re.IGNORECASE)
_EXAMPLE_RE = re.compile(r"example:\s*(.+)", re.IGNORECASE)
_WS_RE = re.compile(r"\s")


class Unavailable(ConnectionError):
    """Raised when a lookup needs the network, the reader is offline and nothing is cached."""


class InsufficientText(ValueError):
    """Raised when a section is too short to summarize."""


@dataclass
class Definition:
    word: str
    definition: str
    example: str = ""
    cached: bool = False
    failed: bool = False


@dataclass
class Summary:
    summary: str
    cached: bool = False
    failed: bool = False


def definition_key(word: str) -> str:
    return f"{DEFINITION_PREFIX}{normalize_word(word)}"


def summary_key(text: str, prefix_length: int = 100) -> str:
    """
    Cache key for a section summary.

    Only the first ``prefix_length`` characters take part, with whitespace
    removed and case folded, so trailing edits to a section keep its key.
    """
    prefix = _WS_RE.sub("", text[:prefix_length]).lower()
    digest = hashlib.sha1(prefix.encode("utf-8")).hexdigest()[:16]
    return f"{SUMMARY_PREFIX}{digest}"


def definition_prompt(word: str) -> str:
    return (
        f'For the word "{word}", provide:\n'
        "1. A brief, simple definition in one sentence.\n"
        "2. A simple example sentence using the word.\n\n"
        "Format your response as:\n"
        "Definition: [definition]\n"
        "Example: [example sentence]"
    )


def strict_example_prompt(word: str) -> str:
    return (
        f'Write one short, natural example sentence that contains the exact text "{word}". '
        "Reply with the sentence only."
    )


def summary_prompt(text: str) -> str:
    return f"Summarize the following text in 5-6 sentences:\n\n{text}"


def parse_definition(content: str) -> tuple[str, str]:
    """
    Split a model reply into ``(definition, example)``.

    Labeled ``Definition:``/``Example:`` fields win. Without labels the first
    non-empty line is the definition and the second the example; a one-line
    reply is all definition.
    """
    cleaned = content.replace("**", "").strip()
    definition_match = _DEFINITION_RE.search(cleaned)
    if definition_match:
        definition = definition_match.group(1).strip()
        example_match = _EXAMPLE_RE.search(cleaned)
        example = example_match.group(1).strip() if example_match else ""
        return definition, example
    lines = [line.strip() for line in cleaned.splitlines() if line.strip()]
    if len(lines) >= 2:
        return lines[0], lines[1]
    return cleaned, ""


class AnnotationService:
    """
    Cache-first word definitions and section summaries.

    Results are stored in a string key-value store as small JSON objects and
    never expire; the only way to drop one is :meth:`remove_word`. Network
    failures never propagate: the service falls back to whatever is cached,
    or returns a result flagged ``failed`` with a readable message.
    """

    def __init__(
        self,
        store: KeyValueStore,
        generator: TextGenerator,
        *,
        config: ReaderConfig | None = None,
        is_online: Callable[[], bool] | None = None,
    ) -> None:
        self.store = store
        self.generator = generator
        self.config = config or ReaderConfig()
        self.is_online = is_online or (lambda: True)

    def _read_json(self, key: str) -> dict[str, object] | None:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            debug_log(f"ignoring unreadable cache entry {key}")
            return None
        return payload if isinstance(payload, dict) else None

    def cached_definition(self, word: str) -> Definition | None:
        payload = self._read_json(definition_key(word))
        if payload is None:
            return None
        definition = payload.get("definition")
        if not isinstance(definition, str):
            return None
        example = payload.get("example")
        return Definition(
            word=word.strip(),
            definition=definition,
            example=example if isinstance(example, str) else "",
            cached=True,
        )

    def cached_summary(self, text: str) -> Summary | None:
        payload = self._read_json(summary_key(text, self.config.summary_key_prefix))
        if payload is None:
            return None
        summary = payload.get("summary")
        if not isinstance(summary, str):
            return None
        return Summary(summary=summary, cached=True)

    def is_defined(self, word: str) -> bool:
        return self.cached_definition(word) is not None

    def remove_word(self, word: str) -> None:
        self.store.delete(definition_key(word))

    async def _generate(self, prompt: str, max_tokens: int) -> str:
        loop = asyncio.get_running_loop()
        call = functools.partial(self.generator.complete, prompt, max_tokens=max_tokens)
        return await loop.run_in_executor(None, call)

    async def _retry_example(self, word: str) -> str | None:
        try:
            content = await self._generate(
                strict_example_prompt(word), self.config.definition_max_tokens
            )
        except GenerationError as exc:
            debug_log(f"example retry for '{word}' failed: {exc}")
            return None
        example = content.replace("**", "").strip().splitlines()[0].strip() if content.strip() else ""
        if normalize_word(word) in example.lower():
            return example
        return None

    async def lookup_word(self, word: str) -> Definition:
        word = word.strip()
        if not word:
            raise ValueError("word must not be empty")
        cached = self.cached_definition(word)
        if cached is not None:
            return cached
        if not self.is_online():
            raise Unavailable("You are offline. No cached definition available.")

        try:
            content = await self._generate(definition_prompt(word), self.config.definition_max_tokens)
        except GenerationError as exc:
            warn(f"Definition request for '{word}' failed: {exc}")
            cached = self.cached_definition(word)
            if cached is not None:
                return cached
            return Definition(word=word, definition=DEFINITION_FAILED_MESSAGE, failed=True)

        definition, example = parse_definition(content)
        if self.config.retry_example_without_word and normalize_word(word) not in example.lower():
            retried = await self._retry_example(word)
            if retried:
                example = retried

        self.store.set(
            definition_key(word),
            json.dumps({"definition": definition, "example": example}, ensure_ascii=False),
        )
        return Definition(word=word, definition=definition, example=example)

    async def summarize_section(self, text: str) -> Summary:
        if not text or len(text.strip()) < self.config.min_summary_text:
            raise InsufficientText("Not enough text to summarize")
        cached = self.cached_summary(text)
        if cached is not None:
            return cached
        if not self.is_online():
            raise Unavailable("You are offline. No cached summary available.")

        try:
            content = await self._generate(summary_prompt(text), self.config.summary_max_tokens)
        except GenerationError as exc:
            warn(f"Summary request failed: {exc}")
            cached = self.cached_summary(text)
            if cached is not None:
                return cached
            return Summary(summary=SUMMARY_FAILED_MESSAGE, failed=True)

        summary = content.strip()
        self.store.set(
            summary_key(text, self.config.summary_key_prefix),
            json.dumps({"summary": summary}, ensure_ascii=False),
        )
        return Summary(summary=summary)


__all__ = [
    "AnnotationService",
    "Definition",
    "InsufficientText",
    "Summary",
    "Unavailable",
    "definition_key",
    "parse_definition",
    "summary_key",
]
