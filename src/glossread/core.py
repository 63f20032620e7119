from __future__ import annotations

import base64
import io
import warnings
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable
from urllib.parse import unquote

from bs4 import (
    BeautifulSoup,
    FeatureNotFound,
    Tag,
    XMLParsedAsHTMLWarning,
)  # type: ignore
from bs4.element import Declaration, Doctype, ProcessingInstruction

from .logging_utils import debug_log, warn
from .segment import insert_summary_markers

CONTAINER_PATH = "META-INF/container.xml"


class MalformedArchive(ValueError):
    """Raised when an EPUB cannot be turned into a document at all."""


class MissingResource(LookupError):
    """Raised when an archive entry referenced by the book does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Entry not found in archive: {path}")
        self.path = path


class ArchiveReader:
    """
    Read-only view over the entries of an EPUB (zip) archive.

    Accepts raw bytes, a filesystem path or an already opened ZipFile. The
    reader is the only handle the pipeline stages share; nothing is kept in
    module globals, so several books can be loaded side by side.
    """

    def __init__(self, source: bytes | str | Path | zipfile.ZipFile) -> None:
        if isinstance(source, zipfile.ZipFile):
            self._zip = source
        else:
            try:
                if isinstance(source, (bytes, bytearray)):
                    self._zip = zipfile.ZipFile(io.BytesIO(bytes(source)))
                else:
                    self._zip = zipfile.ZipFile(source)
            except zipfile.BadZipFile as exc:
                raise MalformedArchive("Invalid EPUB: not a zip archive") from exc
        self._names = set(self._zip.namelist())

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._zip.close()

    def names(self) -> list[str]:
        return self._zip.namelist()

    def has(self, path: str) -> bool:
        return path in self._names

    def read_bytes(self, path: str) -> bytes:
        if path not in self._names:
            raise MissingResource(path)
        with self._zip.open(path, "r") as handle:
            return handle.read()

    def read_text(self, path: str) -> str:
        raw = self.read_bytes(path)
        for enc in ("utf-8-sig", "utf-16"):
            try:
                return raw.decode(enc)
            except UnicodeDecodeError:
                continue
        return raw.decode("utf-8", errors="ignore")


def resolve_path(base_path: str, reference: str) -> str:
    """
    Resolve ``reference`` against the archive entry ``base_path``.

    A leading ``/`` makes the reference archive-absolute. Otherwise it is
    joined with the directory of ``base_path``; ``.`` segments are dropped and
    ``..`` pops the previous segment. Fragments and query strings are ignored.
    """
    reference = reference.split("#", 1)[0].split("?", 1)[0]
    reference = unquote(reference)
    if reference.startswith("/"):
        return reference[1:]
    base_dir = base_path[: base_path.rfind("/") + 1]
    resolved: list[str] = []
    for part in (base_dir + reference).split("/"):
        if part == "..":
            if resolved:
                resolved.pop()
        elif part not in (".", ""):
            resolved.append(part)
    return "/".join(resolved)


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    path: str
    media_type: str | None = None


@dataclass(frozen=True)
class PackageLayout:
    opf_path: str
    base_dir: str
    manifest: dict[str, ManifestItem]
    spine: tuple[str, ...]

    @property
    def content_paths(self) -> list[str]:
        return [self.manifest[idref].path for idref in self.spine if idref in self.manifest]


def _strip_tag(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _get_attr(elem: ET.Element, name: str) -> str | None:
    for attr, value in elem.attrib.items():
        if _strip_tag(attr) == name:
            return value
    return None


def _parse_xml(text: str, what: str) -> ET.Element:
    try:
        return ET.fromstring(text.lstrip("\ufeff").strip())
    except ET.ParseError as exc:
        raise MalformedArchive(f"Invalid EPUB: cannot parse {what}: {exc}") from exc


def _find_opf_path(reader: ArchiveReader) -> str:
    try:
        container = reader.read_text(CONTAINER_PATH)
    except MissingResource as exc:
        raise MalformedArchive("Invalid EPUB: container.xml not found") from exc
    root = _parse_xml(container, "container.xml")
    rootfiles = [elem for elem in root.iter() if _strip_tag(elem.tag) == "rootfile"]
    if not rootfiles:
        raise MalformedArchive("Invalid EPUB: container.xml missing rootfile")
    full_path = _get_attr(rootfiles[0], "full-path")
    if not full_path:
        raise MalformedArchive("Invalid EPUB: rootfile missing full-path")
    return full_path.lstrip("/")


def resolve_package(reader: ArchiveReader) -> PackageLayout:
    """Walk container.xml → OPF → manifest/spine and return the reading order."""
    opf_path = _find_opf_path(reader)
    try:
        opf_xml = reader.read_text(opf_path)
    except MissingResource as exc:
        raise MalformedArchive(f"Invalid EPUB: OPF file not found ({opf_path})") from exc
    root = _parse_xml(opf_xml, opf_path)
    base_dir = opf_path[: opf_path.rfind("/") + 1]

    manifest: dict[str, ManifestItem] = {}
    spine: list[str] = []
    for elem in root.iter():
        name = _strip_tag(elem.tag)
        if name == "item":
            item_id = _get_attr(elem, "id")
            href = _get_attr(elem, "href")
            if not item_id or not href:
                continue
            manifest[item_id] = ManifestItem(
                id=item_id,
                href=href,
                path=resolve_path(opf_path, href),
                media_type=_get_attr(elem, "media-type"),
            )
        elif name == "itemref":
            idref = _get_attr(elem, "idref")
            if idref:
                spine.append(idref)

    if not manifest:
        raise MalformedArchive("Invalid EPUB: no manifest items found")
    for idref in spine:
        if idref not in manifest:
            debug_log(f"spine itemref '{idref}' has no manifest entry; skipping")
    return PackageLayout(
        opf_path=opf_path,
        base_dir=base_dir,
        manifest=manifest,
        spine=tuple(spine),
    )


def _soup_from_html(html: str) -> BeautifulSoup:
    # XHTML documents still go through an HTML parser so named entities decode.
    for parser in ("html5lib", "lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(html, "html.parser")


def image_media_type(path: str) -> str:
    lowered = path.lower()
    if lowered.endswith(".png"):
        return "image/png"
    if lowered.endswith(".gif"):
        return "image/gif"
    return "image/jpeg"


_IMAGE_REFS = (("img", ("src",)), ("image", ("href", "xlink:href")))


def inline_resources(reader: ArchiveReader, markup: str, document_path: str) -> str:
    """
    Embed the images of one content document as data URIs.

    Returns the inner markup of the document's ``<body>``, or the contents of
    its root element without ``<head>`` when it has no body. Images missing
    from the archive are reported and keep their original reference.
    """
    soup = _soup_from_html(markup)
    encoded: dict[str, str | None] = {}
    for tag_name, attrs in _IMAGE_REFS:
        for tag in soup.find_all(tag_name):
            for attr in attrs:
                ref = tag.get(attr)
                if not ref or ref.startswith("data:"):
                    continue
                image_path = resolve_path(document_path, ref)
                if image_path not in encoded:
                    try:
                        payload = base64.b64encode(reader.read_bytes(image_path)).decode("ascii")
                    except MissingResource:
                        warn(f"Image not found: {image_path}")
                        payload = None
                    encoded[image_path] = payload
                payload = encoded[image_path]
                if payload is not None:
                    tag[attr] = f"data:{image_media_type(image_path)};base64,{payload}"
    body = soup.find("body")
    if isinstance(body, Tag):
        return body.decode_contents()
    for node in list(soup.contents):
        if isinstance(node, (Declaration, Doctype, ProcessingInstruction)):
            node.extract()
    for head in soup.find_all("head"):
        head.decompose()
    root = soup.find("html")
    return (root if isinstance(root, Tag) else soup).decode_contents()


@dataclass
class AssembledDocument:
    """The single mutable tree a reading session works on."""

    soup: BeautifulSoup
    layout: PackageLayout | None = None
    markers: list[Tag] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def body(self) -> Tag:
        body = self.soup.body
        if not isinstance(body, Tag):
            raise MalformedArchive("Assembled document has no <body>")
        return body

    def body_html(self) -> str:
        return self.body.decode_contents()


def assemble_document(fragments: Iterable[str]) -> AssembledDocument:
    """Parse the concatenated body fragments, in the given order, as one tree."""
    html = "".join(fragments)
    soup = BeautifulSoup(f"<html><head></head><body>{html}</body></html>", "html.parser")
    return AssembledDocument(soup=soup)


def load_fragments(reader: ArchiveReader, layout: PackageLayout) -> tuple[list[str], list[str]]:
    fragments: list[str] = []
    skipped: list[str] = []
    for path in layout.content_paths:
        try:
            markup = reader.read_text(path)
        except MissingResource:
            warn(f"Content document not found: {path}")
            skipped.append(path)
            continue
        fragments.append(inline_resources(reader, markup, path))
        debug_log(f"inlined {path}")
    return fragments, skipped


def build_document(
    source: bytes | str | Path | ArchiveReader,
    *,
    summary_interval: int = 5000,
) -> AssembledDocument:
    """
    Run the full load pipeline: package resolution, image inlining, assembly
    and summary-marker segmentation.
    """
    reader = source if isinstance(source, ArchiveReader) else ArchiveReader(source)
    try:
        layout = resolve_package(reader)
        fragments, skipped = load_fragments(reader, layout)
    finally:
        if reader is not source:
            reader.close()
    if not any(fragment.strip() for fragment in fragments):
        raise MalformedArchive("No content found in EPUB")
    document = assemble_document(fragments)
    document.layout = layout
    document.skipped = skipped
    document.markers = insert_summary_markers(document.body, interval=summary_interval)
    debug_log(
        f"assembled {len(fragments)} documents, {len(document.markers)} summary markers"
    )
    return document


__all__ = [
    "ArchiveReader",
    "AssembledDocument",
    "ManifestItem",
    "MalformedArchive",
    "MissingResource",
    "PackageLayout",
    "assemble_document",
    "build_document",
    "image_media_type",
    "inline_resources",
    "load_fragments",
    "resolve_package",
    "resolve_path",
]
