from __future__ import annotations

import json
from typing import Protocol

import requests

from .config import DEFAULT_API_URL, DEFAULT_MODEL
from .logging_utils import debug_log, warn


class GenerationError(RuntimeError):
    """Base class for failures talking to the text generation endpoint."""


class GenerationFailure(GenerationError):
    """Raised when the endpoint is unreachable or answers with an error status."""


class GenerationResponseError(GenerationError):
    """Raised when a successful response carries no usable completion."""


class TextGenerator(Protocol):
    def complete(self, prompt: str, *, max_tokens: int) -> str:
        ...


class GenerationClient:
    """
    Thin wrapper around an OpenAI-style ``/chat/completions`` endpoint.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._session = requests.Session()
        self._warned_missing_key = False

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def complete(self, prompt: str, *, max_tokens: int) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
        }
        if not self.api_key and not self._warned_missing_key:
            warn("No API key configured; set GLOSSREAD_API_KEY or MISTRAL_API_KEY.")
            self._warned_missing_key = True
        debug_log(f"POST {self.base_url}/chat/completions model={self.model} max_tokens={max_tokens}")
        try:
            resp = self._session.post(
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GenerationFailure(
                f"Failed to contact generation endpoint at {self.base_url}"
            ) from exc

        if resp.status_code != 200:
            raise GenerationFailure(
                f"/chat/completions failed with status {resp.status_code}: {resp.text}"
            )

        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise GenerationResponseError("Endpoint returned invalid JSON") from exc
        return extract_completion(data)

    def close(self) -> None:
        self._session.close()


def extract_completion(data: object) -> str:
    """Pull ``choices[0].message.content`` out of a completion payload."""
    if not isinstance(data, dict):
        raise GenerationResponseError("Completion payload is not an object")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise GenerationResponseError("Completion payload has no choices")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise GenerationResponseError("Completion payload has no message content")
    return content


__all__ = [
    "GenerationClient",
    "GenerationError",
    "GenerationFailure",
    "GenerationResponseError",
    "TextGenerator",
    "extract_completion",
]
