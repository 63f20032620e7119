from __future__ import annotations

import io
import zipfile
from typing import Callable, Mapping

import pytest

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def xhtml(body: str, title: str = "Chapter") -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml">'
        f"<head><title>{title}</title></head>"
        f"<body>{body}</body></html>"
    )


def build_opf(documents: Mapping[str, str], spine: list[str] | None = None) -> str:
    ids = {href: f"doc{index}" for index, href in enumerate(documents)}
    items = "\n".join(
        f'    <item id="{ids[href]}" href="{href}" media-type="application/xhtml+xml"/>'
        for href in documents
    )
    order = spine if spine is not None else list(documents)
    refs = "\n".join(f'    <itemref idref="{ids.get(href, href)}"/>' for href in order)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/"><dc:title>Sample</dc:title></metadata>
  <manifest>
{items}
  </manifest>
  <spine>
{refs}
  </spine>
</package>
"""


def make_epub_bytes(
    documents: Mapping[str, str],
    *,
    spine: list[str] | None = None,
    extra: Mapping[str, bytes | str] | None = None,
    opf_path: str = "OEBPS/content.opf",
    skip: tuple[str, ...] = (),
) -> bytes:
    """
    Build an EPUB in memory.

    ``documents`` maps OPF-relative hrefs to body markup; ``extra`` maps
    archive paths to raw entries; ``skip`` lists archive paths to leave out
    even though the manifest names them.
    """
    base = opf_path[: opf_path.rfind("/") + 1]
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        zf.writestr("META-INF/container.xml", CONTAINER_XML.format(opf_path=opf_path))
        zf.writestr(opf_path, build_opf(documents, spine))
        for href, body in documents.items():
            path = base + href
            if path in skip:
                continue
            zf.writestr(path, xhtml(body))
        for path, data in (extra or {}).items():
            zf.writestr(path, data)
    return buffer.getvalue()


@pytest.fixture
def make_epub() -> Callable[..., bytes]:
    return make_epub_bytes


class ManualScheduler:
    """Deterministic stand-in for ``loop.call_later``."""

    class Handle:
        def __init__(self, scheduler: "ManualScheduler", due: float, callback: Callable[[], None]) -> None:
            self.scheduler = scheduler
            self.due = due
            self.callback = callback
            self.cancelled = False

        def cancel(self) -> None:
            self.cancelled = True

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: list[ManualScheduler.Handle] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> "ManualScheduler.Handle":
        handle = ManualScheduler.Handle(self, self.now + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def active(self) -> list["ManualScheduler.Handle"]:
        return [h for h in self.handles if not h.cancelled and h.callback is not None]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        for handle in list(self.handles):
            if handle.cancelled or handle.callback is None or handle.due > self.now:
                continue
            callback = handle.callback
            handle.callback = None
            callback()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


class StubGenerator:
    def __init__(self, replies: list[str] | None = None, error: Exception | None = None) -> None:
        self.replies = list(replies or [])
        self.error = error
        self.prompts: list[str] = []

    def complete(self, prompt: str, *, max_tokens: int) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if not self.replies:
            raise AssertionError(f"unexpected generation call: {prompt!r}")
        return self.replies.pop(0)
